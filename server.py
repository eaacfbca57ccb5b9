import asyncio
import logging
import os
import threading

from flask import Flask, jsonify, request

import config
import fetcher
from cache_store import CacheStore
from prediction_engine import EnsembleEngine
from service import PredictionService, error_payload

logger = logging.getLogger(__name__)


def create_app(provider=None, service=None) -> Flask:
    app = Flask(__name__)
    provider = provider or fetcher.HistoryProvider()
    service = service or PredictionService(EnsembleEngine(), CacheStore())
    app.config['HISTORY_PROVIDER'] = provider
    app.config['PREDICTION_SERVICE'] = service

    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return response

    @app.route('/api/predict', methods=['GET'])
    def predict():
        try:
            history = provider.fetch_history_sync()
            if len(history) < service.min_history:
                snapshot = service.cached_history()
                if len(snapshot) > len(history):
                    logger.info(f"Provider returned {len(history)} records, using cached snapshot of {len(snapshot)}")
                    history = snapshot

            payload = service.run_cycle(history)
            if payload['status'] == config.GameConstants.STATUS_ERROR:
                cached = service.latest_prediction()
                if cached:
                    payload['cached_prediction'] = cached
            return jsonify(payload), 200
        except Exception as e:
            logger.exception("Prediction error")
            return jsonify(error_payload('Prediction engine failed', str(e))), 500

    @app.route('/api/history', methods=['GET'])
    def history():
        try:
            limit = request.args.get('limit', type=int) or config.HISTORY_DEFAULT_LIMIT
            limit = max(1, min(limit, config.FETCH_LIMIT))
            records = provider.fetch_history_sync(limit)
            if not records:
                records = service.cached_history()[:limit]
            return jsonify(service.history_payload(records)), 200
        except Exception as e:
            logger.exception("History error")
            return jsonify(error_payload('Failed to fetch history', str(e))), 500

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            "status": "alive",
            "models": service.engine.model_count,
            "families": service.engine.summary(),
        })

    return app


# --- BACKGROUND MONITOR ---
def start_monitor_loop(provider=None, service=None):
    """Runs the polling monitor in its own event loop (daemon thread target)."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    logger.info("Auto-starting WinGo monitor...")
    try:
        loop.run_until_complete(fetcher.main_loop(provider, service))
    except Exception:
        logger.exception("Monitor crashed")
    finally:
        loop.close()


app = create_app()

if __name__ == '__main__':
    config.configure_logging()
    if os.environ.get("WINGO_START_MONITOR") == "1":
        t = threading.Thread(
            target=start_monitor_loop,
            args=(app.config['HISTORY_PROVIDER'], app.config['PREDICTION_SERVICE']),
            daemon=True,
        )
        t.start()
    app.run(host='0.0.0.0', port=int(os.environ.get("PORT", 5000)))
