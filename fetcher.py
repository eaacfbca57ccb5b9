import asyncio
import logging
import time
from typing import List, Optional

import aiohttp

import config
from cache_store import CacheStore
from prediction_engine import DrawRecord, EnsembleEngine
from service import PredictionService

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Transport or payload failure while pulling draw history."""


def extract_items(payload) -> list:
    """Handle the common lottery JSON shapes."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get('data')
        if isinstance(data, dict) and isinstance(data.get('list'), list):
            return data['list']
        if isinstance(payload.get('list'), list):
            return payload['list']
    raise FetchError("Invalid data format received")


def _issue_sort_key(record: DrawRecord):
    return (0, int(record.issue), "") if record.issue.isdigit() else (1, 0, record.issue)


def normalize_items(items: list, timestamp: Optional[str] = None) -> List[DrawRecord]:
    """Turn raw API items into DrawRecords, newest first. Malformed items are skipped."""
    records = []
    for item in items:
        if not isinstance(item, dict):
            continue
        issue = item.get('issue') or item.get('issueNumber')
        result = item.get('result')
        if result is None:
            result = item.get('number')
        if issue is None or result is None:
            logger.debug(f"Skipping malformed item: {item}")
            continue
        records.append(DrawRecord.from_result(issue, result, timestamp))
    records.sort(key=_issue_sort_key, reverse=True)
    return records


class HistoryProvider:
    """
    Pulls the draw history endpoint and serves it newest-first.

    Responses are cached for `cache_seconds`; on any failure the last good
    sequence is returned (possibly stale) or an empty list.
    """

    def __init__(self, url: str = config.API_URL, cache_seconds: float = config.FETCH_CACHE_SECONDS,
                 timeout: float = config.FETCH_TIMEOUT):
        self.url = url
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self.cached_data: List[DrawRecord] = []
        self.last_fetch_time = 0.0

    async def _request(self, session: aiohttp.ClientSession, limit: int) -> List[DrawRecord]:
        params = {'pageSize': limit, 'page': 1}
        try:
            async with session.get(self.url, headers=config.HEADERS, params=params,
                                   timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                if response.status != 200:
                    raise FetchError(f"HTTP {response.status}: {response.reason}")
                # content_type=None: some mirrors send JSON as text/html
                payload = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError("API connection timeout") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Fetch connection failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON: {e}") from e
        return normalize_items(extract_items(payload))

    async def fetch_history(self, session: aiohttp.ClientSession, limit: int = config.FETCH_LIMIT) -> List[DrawRecord]:
        now = time.monotonic()
        if self.cached_data and now - self.last_fetch_time < self.cache_seconds:
            return self.cached_data[:limit]

        try:
            records = await self._request(session, max(limit, config.FETCH_LIMIT))
        except FetchError as e:
            logger.error(f"Data fetch error: {e}")
            return self.cached_data[:limit]

        if records:
            self.cached_data = records
            self.last_fetch_time = now
        return records[:limit]

    def fetch_history_sync(self, limit: int = config.FETCH_LIMIT) -> List[DrawRecord]:
        async def _run():
            async with aiohttp.ClientSession() as session:
                return await self.fetch_history(session, limit)
        return asyncio.run(_run())


# =============================================================================
# MONITOR LOOP
# =============================================================================

async def main_loop(provider: Optional[HistoryProvider] = None, service=None):
    """Poll for new draws and run one prediction cycle per new issue."""
    provider = provider or HistoryProvider()
    service = service or PredictionService(EnsembleEngine(), CacheStore())
    logger.info("WinGo monitor initialized.")

    last_processed_issue = None
    async with aiohttp.ClientSession() as session:
        while True:
            try:
                history = await provider.fetch_history(session)
                if not history:
                    logger.warning("No data received from API. Retrying...")
                    await asyncio.sleep(config.RECONNECT_DELAY)
                    continue

                curr_issue = history[0].issue
                if curr_issue != last_processed_issue:
                    logger.info(f"New Period Detected: {curr_issue}")
                    payload = service.run_cycle(history)
                    if payload['status'] == config.GameConstants.STATUS_SUCCESS:
                        if payload['previous_prediction_result']:
                            logger.info(f"RESULT: {payload['previous_prediction_result']} | Period: {curr_issue}")
                        current = payload['current_prediction']
                        logger.info(f"NEXT AFTER {curr_issue} | PRED: {current['outcome']} ({current['confidence']})")
                    else:
                        logger.warning(payload['message'])
                    last_processed_issue = curr_issue

                await asyncio.sleep(config.POLL_INTERVAL)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Monitor loop error: {e}")
                await asyncio.sleep(config.RECONNECT_DELAY)


if __name__ == '__main__':
    config.configure_logging()
    try:
        asyncio.run(main_loop())
    except KeyboardInterrupt:
        logger.info("System shutting down gracefully.")
