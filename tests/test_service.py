"""
Tests for the prediction service: the layer between the HTTP surface and the engine.

Tests cover:
1. Insufficient-data handling
2. Win/loss resolution across cycles
3. Best-effort persistence
4. History payloads and cached snapshots
"""

import random

import pytest

from cache_store import CacheStore, StoreError
from conftest import make_history
from prediction_engine import BIG, SMALL, DrawRecord, EnsembleEngine
from service import PredictionService


class FailingStore(CacheStore):
    def set(self, key, value, ttl=None):
        raise StoreError("disk full")


def next_draw(history, outcome):
    """A draw one issue newer than history[0] with the requested outcome."""
    issue = str(int(history[0].issue) + 1)
    result = "75,1,1" if outcome == BIG else "25,1,1"
    return [DrawRecord.from_result(issue, result)] + list(history)


def opposite(outcome):
    return SMALL if outcome == BIG else BIG


@pytest.fixture
def history():
    rng = random.Random(7)
    return make_history([rng.randint(0, 99) for _ in range(80)])


@pytest.fixture
def service(tmp_path, fixed_clock):
    return PredictionService(EnsembleEngine(clock=fixed_clock), CacheStore(str(tmp_path)))


class TestRunCycle:

    def test_insufficient_data(self, service):
        payload = service.run_cycle(make_history([60] * 49))
        assert payload['status'] == 'error'
        assert payload['message'] == 'Insufficient data for prediction'

    def test_empty_history(self, service):
        assert service.run_cycle([])['status'] == 'error'

    def test_first_cycle_has_no_previous_result(self, service, history):
        payload = service.run_cycle(history)
        assert payload['status'] == 'success'
        assert payload['previous_prediction_result'] is None
        assert payload['statistics']['total_predictions'] == 0
        assert payload['statistics']['accuracy'] == '0.00%'
        current = payload['current_prediction']
        assert current['outcome'] in (BIG, SMALL)
        assert current['issue'] == history[0].issue
        assert current['model_count'] == 120
        assert current['confidence'].endswith('%')
        assert payload['last_result'] == {
            'issue': history[0].issue,
            'number': history[0].number,
            'outcome': history[0].outcome,
            'full_result': history[0].result_raw,
        }

    def test_same_issue_is_not_scored_twice(self, service, history):
        service.run_cycle(history)
        payload = service.run_cycle(history)
        assert payload['previous_prediction_result'] is None
        assert payload['statistics']['total_predictions'] == 0

    def test_win_then_loss(self, service, history):
        first = service.run_cycle(history)
        predicted = first['current_prediction']['outcome']

        history = next_draw(history, predicted)
        second = service.run_cycle(history)
        assert second['previous_prediction_result'] == 'WIN'
        assert second['statistics']['wins'] == 1
        assert second['statistics']['win_streak'] == 1

        predicted = second['current_prediction']['outcome']
        history = next_draw(history, opposite(predicted))
        third = service.run_cycle(history)
        assert third['previous_prediction_result'] == 'LOSS'
        stats = third['statistics']
        assert stats['total_predictions'] == 2
        assert stats['losses'] == 1
        assert stats['loss_streak'] == 1
        assert stats['win_streak'] == 0
        assert stats['accuracy'] == '50.00%'

    def test_skipped_draws_score_the_following_issue(self, service, history):
        first = service.run_cycle(history)
        predicted = first['current_prediction']['outcome']

        history = next_draw(history, predicted)
        history = next_draw(history, opposite(predicted))
        history = next_draw(history, opposite(predicted))
        payload = service.run_cycle(history)
        assert payload['previous_prediction_result'] == 'WIN'
        assert payload['statistics']['total_predictions'] == 1

    def test_issue_outside_window_is_not_scored(self, service, history):
        service.run_cycle(history)
        newer = history
        for _ in range(len(history)):
            newer = next_draw(newer, BIG)
        payload = service.run_cycle(newer[:len(history)])
        assert payload['previous_prediction_result'] is None
        assert payload['statistics']['total_predictions'] == 0

    def test_family_breakdown_in_payload(self, service, history):
        families = service.run_cycle(history)['current_prediction']['family_breakdown']
        assert set(families) == {'TREND', 'MEAN_REVERSION', 'PATTERN', 'STATISTICAL'}
        total = sum(v for tally in families.values() for v in tally.values())
        assert total == pytest.approx(1.0)

    def test_store_failure_still_answers(self, tmp_path, fixed_clock, history):
        service = PredictionService(EnsembleEngine(clock=fixed_clock), FailingStore(str(tmp_path)))
        payload = service.run_cycle(history)
        assert payload['status'] == 'success'

    def test_latest_prediction_is_cached(self, service, history):
        payload = service.run_cycle(history)
        assert service.latest_prediction() == payload


class TestHistoryPayload:

    def test_payload_shape(self, service, history):
        payload = service.history_payload(history)
        assert payload['status'] == 'success'
        assert payload['count'] == 80
        assert payload['data'][0] == history[0].to_dict()
        assert payload['analysis']['total_samples'] == 80

    def test_short_history_has_no_analysis(self, service):
        assert service.history_payload(make_history([60] * 5))['analysis'] is None

    def test_snapshot_round_trip(self, service, history):
        service.history_payload(history)
        assert service.cached_history() == history

    def test_no_snapshot_is_empty(self, service):
        assert service.cached_history() == []
