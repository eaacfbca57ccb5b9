import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from analysis import analyze_trends
from cache_store import CacheStore, PredictionStats, StoreError
from config import EngineConfig, GameConstants
from prediction_engine import DrawRecord, EnsembleEngine

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_payload(message: str, error: Optional[str] = None) -> Dict:
    payload = {'status': GameConstants.STATUS_ERROR, 'message': message, 'timestamp': _timestamp()}
    if error is not None:
        payload['error'] = error
    return payload


class PredictionService:
    """
    Runs one prediction cycle against a history snapshot.

    Statistics are loaded from and saved to the store around each cycle, so
    the engine itself stays stateless. Store failures are logged and never
    stop a response.
    """

    def __init__(self, engine: EnsembleEngine, store: CacheStore,
                 min_history: int = EngineConfig.MIN_HISTORY_REQUIRED):
        self.engine = engine
        self.store = store
        self.min_history = min_history

    def load_stats(self) -> PredictionStats:
        try:
            return PredictionStats.load(self.store)
        except StoreError as e:
            logger.warning(f"Stats load failed, starting fresh: {e}")
            return PredictionStats()

    def save_stats(self, stats: PredictionStats) -> None:
        try:
            stats.save(self.store)
        except StoreError as e:
            logger.warning(f"Stats save failed, prediction not persisted: {e}")

    @staticmethod
    def resolve_previous(stats: PredictionStats, history: Sequence[DrawRecord]) -> Optional[str]:
        """
        Score the last prediction against the draw that followed its issue.

        Nothing is scored while that issue is still the newest, or once it has
        dropped out of the history window.
        """
        last = stats.last_prediction
        if not last:
            return None
        issues = [r.issue for r in history]
        if last.get('issue') not in issues:
            logger.info(f"Issue {last.get('issue')} outside history window, prediction not scored")
            return None
        i = issues.index(last.get('issue'))
        if i == 0:
            return None
        return stats.record(last.get('prediction') == history[i - 1].outcome)

    def run_cycle(self, history: Sequence[DrawRecord]) -> Dict:
        if not history or len(history) < self.min_history:
            return error_payload('Insufficient data for prediction')

        latest = history[0]
        stats = self.load_stats()
        win_loss = self.resolve_previous(stats, history)

        prediction = self.engine.predict(history)
        now = _timestamp()

        stats.last_prediction = {
            'prediction': prediction.outcome,
            'confidence': prediction.confidence,
            'timestamp': now,
            'issue': latest.issue,
        }
        stats.last_result = {
            'outcome': latest.outcome,
            'number': latest.number,
            'issue': latest.issue,
        }
        self.save_stats(stats)

        payload = {
            'status': GameConstants.STATUS_SUCCESS,
            'timestamp': now,
            'previous_prediction_result': win_loss,
            'statistics': {
                'accuracy': f"{stats.accuracy:.2f}%",
                'win_streak': stats.win_streak,
                'loss_streak': stats.loss_streak,
                'total_predictions': stats.total_predictions,
                'wins': stats.wins,
                'losses': stats.losses,
            },
            'current_prediction': {
                'outcome': prediction.outcome,
                'confidence': f"{prediction.confidence:.2f}%",
                'issue': latest.issue,
                'next_issue_expected': prediction.next_issue_time,
                'model_count': prediction.model_count,
                'trend_direction': prediction.trend_direction,
                'trend_strength': prediction.trend_strength,
                'suggested_stake': prediction.suggested_stake.to_dict(),
                'model_breakdown': prediction.model_breakdown.to_dict(),
                'family_breakdown': prediction.family_breakdown(),
            },
            'last_result': {
                'issue': latest.issue,
                'number': latest.number,
                'outcome': latest.outcome,
                'full_result': latest.result_raw,
            },
        }
        try:
            self.store.store_prediction(payload)
        except StoreError as e:
            logger.warning(f"Prediction snapshot not cached: {e}")
        return payload

    def latest_prediction(self) -> Optional[Dict]:
        """Most recent successful payload, if still within its TTL."""
        return self.store.get_prediction()

    def history_payload(self, history: Sequence[DrawRecord]) -> Dict:
        data = [r.to_dict() for r in history]
        try:
            self.store.store_history(data)
        except StoreError as e:
            logger.warning(f"History snapshot not cached: {e}")
        return {
            'status': GameConstants.STATUS_SUCCESS,
            'count': len(data),
            'data': data,
            'analysis': analyze_trends(history),
            'timestamp': _timestamp(),
        }

    def cached_history(self) -> List[DrawRecord]:
        """Last history snapshot, served when the provider has nothing."""
        snapshot = self.store.get_history() or []
        records = []
        for item in snapshot:
            try:
                records.append(DrawRecord.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning(f"Dropping bad snapshot entry {item!r}: {e}")
        return records
