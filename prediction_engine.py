import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import EngineConfig, GameConstants, StakeConfig

logger = logging.getLogger(__name__)

BIG = GameConstants.BIG
SMALL = GameConstants.SMALL


class Family:
    TREND = "TREND"
    MEAN_REVERSION = "MEAN_REVERSION"
    PATTERN = "PATTERN"
    STATISTICAL = "STATISTICAL"
    ALL = (TREND, MEAN_REVERSION, PATTERN, STATISTICAL)


class StatMethod:
    EMA = 0
    RSI = 1
    FIBONACCI = 2
    BOLLINGER = 3
    NAMES = {EMA: "EMA", RSI: "RSI", FIBONACCI: "FIBONACCI", BOLLINGER: "BOLLINGER"}


class TrendDirection:
    UPWARD = "UPWARD"
    DOWNWARD = "DOWNWARD"
    NEUTRAL = "NEUTRAL"


class StakeLevel:
    HIGH_CONFIDENCE = "HIGH_CONFIDENCE"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RiskLevel:
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


DEFAULT_COUNTS = {
    Family.TREND: EngineConfig.TREND_COUNT,
    Family.MEAN_REVERSION: EngineConfig.MEAN_REVERSION_COUNT,
    Family.PATTERN: EngineConfig.PATTERN_COUNT,
    Family.STATISTICAL: EngineConfig.STATISTICAL_COUNT,
}

DEFAULT_SHARES = {
    Family.TREND: EngineConfig.TREND_SHARE,
    Family.MEAN_REVERSION: EngineConfig.MEAN_REVERSION_SHARE,
    Family.PATTERN: EngineConfig.PATTERN_SHARE,
    Family.STATISTICAL: EngineConfig.STATISTICAL_SHARE,
}


# === UTILITY FUNCTIONS ===
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_number(result_raw) -> int:
    """First comma-separated group of a draw result as an int (0 if unparsable)."""
    try:
        return int(str(result_raw).split(',')[0].strip())
    except (ValueError, TypeError):
        return 0


def get_outcome_from_number(n: int) -> str:
    return BIG if n >= GameConstants.BIG_THRESHOLD else SMALL


def calculate_mean(data: Sequence[float]) -> float:
    return sum(data) / len(data) if data else 0.0


def calculate_std_dev(data: Sequence[float]) -> float:
    """Sample standard deviation; 0.0 for fewer than two points."""
    if len(data) < 2: return 0.0
    mean = calculate_mean(data)
    variance = sum((x - mean) ** 2 for x in data) / (len(data) - 1)
    return math.sqrt(variance)


# === DATA RECORDS ===
@dataclass(frozen=True)
class DrawRecord:
    issue: str
    result_raw: str
    number: int
    outcome: str
    timestamp: str

    @classmethod
    def from_result(cls, issue, result_raw, timestamp: Optional[str] = None) -> "DrawRecord":
        number = parse_number(result_raw)
        return cls(
            issue=str(issue),
            result_raw=str(result_raw),
            number=number,
            outcome=get_outcome_from_number(number),
            timestamp=timestamp or utc_now_iso(),
        )

    @classmethod
    def from_dict(cls, data: Dict) -> "DrawRecord":
        return cls.from_result(data['issue'], data['result'], data.get('timestamp'))

    def to_dict(self) -> Dict:
        return {
            'issue': self.issue,
            'result': self.result_raw,
            'number': self.number,
            'outcome': self.outcome,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class Model:
    id: str
    family: str
    weight: float
    window: int = 0
    threshold: float = 0.0
    lookback: int = 0
    deviation: float = 0.0
    pattern_length: int = 0
    method: int = 0


@dataclass(frozen=True)
class ModelVote:
    model_id: str
    family: str
    vote: str
    weight: float


@dataclass(frozen=True)
class StakeSuggestion:
    amount: float
    level: str
    risk: str

    def to_dict(self) -> Dict:
        return {'amount': self.amount, 'level': self.level, 'risk': self.risk}


@dataclass(frozen=True)
class ModelBreakdown:
    big_vote_share: float
    small_vote_share: float
    active_models: int

    def to_dict(self) -> Dict:
        return {
            'big_vote_share': self.big_vote_share,
            'small_vote_share': self.small_vote_share,
            'active_models': self.active_models,
        }


@dataclass(frozen=True)
class PredictionResult:
    outcome: str
    confidence: float
    model_count: int
    trend_direction: str
    trend_strength: float
    suggested_stake: StakeSuggestion
    next_issue_time: str
    model_breakdown: ModelBreakdown
    votes: Tuple[ModelVote, ...] = field(default=(), repr=False)

    def family_breakdown(self) -> Dict[str, Dict[str, float]]:
        """Weight cast for each outcome, per family."""
        out: Dict[str, Dict[str, float]] = {}
        for v in self.votes:
            tally = out.setdefault(v.family, {BIG: 0.0, SMALL: 0.0})
            tally[v.vote] += v.weight
        return out

    def to_dict(self) -> Dict:
        return {
            'outcome': self.outcome,
            'confidence': self.confidence,
            'model_count': self.model_count,
            'trend_direction': self.trend_direction,
            'trend_strength': self.trend_strength,
            'suggested_stake': self.suggested_stake.to_dict(),
            'next_issue_time': self.next_issue_time,
            'model_breakdown': self.model_breakdown.to_dict(),
        }


# === MODEL POPULATION ===
def _trend_models(count: int, share: float) -> List[Model]:
    return [
        Model(id=f"TREND_{i}", family=Family.TREND, weight=share / count,
              window=5 + (i % 15), threshold=0.5 + i * 0.01)
        for i in range(count)
    ]


def _mean_reversion_models(count: int, share: float) -> List[Model]:
    return [
        Model(id=f"MR_{i}", family=Family.MEAN_REVERSION, weight=share / count,
              lookback=10 + (i % 20), deviation=1.0 + i * 0.05)
        for i in range(count)
    ]


def _pattern_models(count: int, share: float) -> List[Model]:
    return [
        Model(id=f"PATTERN_{i}", family=Family.PATTERN, weight=share / count,
              pattern_length=3 + (i % 7))
        for i in range(count)
    ]


def _statistical_models(count: int, share: float) -> List[Model]:
    return [
        Model(id=f"STAT_{i}", family=Family.STATISTICAL, weight=share / count,
              method=i % 4)
        for i in range(count)
    ]


_BUILDERS = {
    Family.TREND: _trend_models,
    Family.MEAN_REVERSION: _mean_reversion_models,
    Family.PATTERN: _pattern_models,
    Family.STATISTICAL: _statistical_models,
}


def build_population(counts: Optional[Dict[str, int]] = None,
                     shares: Optional[Dict[str, float]] = None) -> Tuple[Model, ...]:
    """
    Build the fixed model population. Same inputs always give the same models.
    Raises ValueError only for an inconsistent custom configuration.
    """
    counts = dict(DEFAULT_COUNTS if counts is None else counts)
    shares = dict(DEFAULT_SHARES if shares is None else shares)

    unknown = (set(counts) | set(shares)) - set(Family.ALL)
    if unknown:
        raise ValueError(f"Unknown model families: {sorted(unknown)}")

    for family in Family.ALL:
        count = counts.get(family, 0)
        share = shares.get(family, 0.0)
        if count < 0 or share < 0:
            raise ValueError(f"{family}: count and share must be non-negative")
        if (count == 0) != (share == 0):
            raise ValueError(f"{family}: count={count} and share={share} must both be zero or both positive")

    total_share = math.fsum(shares.get(f, 0.0) for f in Family.ALL)
    if abs(total_share - 1.0) > EngineConfig.WEIGHT_TOLERANCE:
        raise ValueError(f"Family shares must sum to 1.0, got {total_share}")

    models: List[Model] = []
    for family in Family.ALL:
        models.extend(_BUILDERS[family](counts.get(family, 0), shares.get(family, 0.0)))
    return tuple(models)


def population_summary(models: Sequence[Model]) -> Dict[str, Dict[str, float]]:
    summary: Dict[str, Dict[str, float]] = {}
    for m in models:
        entry = summary.setdefault(m.family, {'count': 0, 'weight': 0.0})
        entry['count'] += 1
        entry['weight'] += m.weight
    return summary


# === INDICATORS ===
def calculate_ema(numbers: Sequence[float], alpha: float = EngineConfig.EMA_ALPHA) -> float:
    # Seeded with the newest value, folded toward older ones.
    ema = numbers[0]
    for x in numbers[1:]:
        ema = alpha * x + (1 - alpha) * ema
    return ema


def calculate_rsi(numbers: Sequence[float], period: int = EngineConfig.RSI_PERIOD) -> float:
    if len(numbers) < period + 1:
        return 50.0
    # newest-first input, so -diff gives newer minus older
    deltas = -np.diff(np.asarray(numbers[:period + 1], dtype=float))
    avg_gain = deltas[deltas > 0].sum() / period
    avg_loss = -deltas[deltas < 0].sum() / period
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def fibonacci_level(numbers: Sequence[float]) -> float:
    high, low = max(numbers), min(numbers)
    rng = high - low
    if rng == 0:
        return 0.5
    return (numbers[0] - low) / rng


def bollinger_position(numbers: Sequence[float], period: int = EngineConfig.BOLLINGER_PERIOD,
                       num_std: float = EngineConfig.BOLLINGER_STD) -> float:
    if len(numbers) < period:
        return 0.0
    window = np.asarray(numbers[:period], dtype=float)
    mean = float(window.mean())
    std = float(window.std(ddof=1))
    if std == 0:
        return 0.0
    upper = mean + num_std * std
    lower = mean - num_std * std
    current = numbers[0]
    if current > upper: return 1.0
    if current < lower: return -1.0
    return (current - mean) / (upper - mean)


# === FAMILY VOTES ===
def trend_following_vote(numbers: Sequence[float], window: int, threshold: float) -> str:
    if len(numbers) < window + 1:
        return BIG
    recent = numbers[:window]
    previous = numbers[window:window * 2]
    previous_avg = calculate_mean(previous)
    recent_avg = calculate_mean(recent)
    if previous_avg != 0:
        strength = (recent_avg - previous_avg) / previous_avg
        if abs(strength) > threshold:
            return BIG if strength > 0 else SMALL
    elif recent_avg != 0:
        # unbounded relative change, vote by sign
        return BIG if recent_avg > 0 else SMALL
    # weak trend (or 0/0): momentum across the window
    return BIG if recent[0] - recent[-1] > 0 else SMALL


def mean_reversion_vote(numbers: Sequence[float], lookback: int, deviation: float) -> str:
    window = numbers[:lookback]
    if not window:
        return BIG
    mean = calculate_mean(window)
    std = calculate_std_dev(window)
    zscore = (window[0] - mean) / std if std > 0 else 0.0
    if zscore > deviation:
        return SMALL
    if zscore < -deviation:
        return BIG
    return BIG if calculate_mean(window[:3]) >= mean else SMALL


def pattern_recognition_vote(numbers: Sequence[float], outcomes: Sequence[str], pattern_length: int) -> str:
    if len(outcomes) < pattern_length * 2:
        return BIG
    query = list(outcomes[:pattern_length])
    big_count = small_count = 0
    for i in range(pattern_length, min(len(outcomes), EngineConfig.PATTERN_SCAN_LIMIT)):
        if list(outcomes[i:i + pattern_length]) == query:
            if outcomes[i - 1] == BIG: big_count += 1
            else: small_count += 1
    if big_count + small_count == 0:
        return trend_following_vote(numbers, EngineConfig.PATTERN_FALLBACK_WINDOW,
                                    EngineConfig.PATTERN_FALLBACK_THRESHOLD)
    return BIG if big_count > small_count else SMALL


def statistical_vote(numbers: Sequence[float], method: int) -> str:
    window = numbers[:EngineConfig.STAT_SLICE]
    if not window:
        return BIG
    if method == StatMethod.EMA:
        return BIG if window[0] > calculate_ema(window) else SMALL
    if method == StatMethod.RSI:
        return BIG if calculate_rsi(window) > 50 else SMALL
    if method == StatMethod.FIBONACCI:
        # zero range sits exactly on 0.5 and therefore votes SMALL
        return BIG if fibonacci_level(window) > 0.5 else SMALL
    if method == StatMethod.BOLLINGER:
        return BIG if bollinger_position(window) > 0 else SMALL
    return BIG


_DISPATCH: Dict[str, Callable[[Model, Sequence[float], Sequence[str]], str]] = {
    Family.TREND: lambda m, nums, outs: trend_following_vote(nums, m.window, m.threshold),
    Family.MEAN_REVERSION: lambda m, nums, outs: mean_reversion_vote(nums, m.lookback, m.deviation),
    Family.PATTERN: lambda m, nums, outs: pattern_recognition_vote(nums, outs, m.pattern_length),
    Family.STATISTICAL: lambda m, nums, outs: statistical_vote(nums, m.method),
}


def evaluate_model(model: Model, numbers: Sequence[float], outcomes: Sequence[str]) -> str:
    return _DISPATCH[model.family](model, numbers, outcomes)


# === TREND & STAKE ===
def analyze_trend(numbers: Sequence[float]) -> Tuple[str, float]:
    if len(numbers) < EngineConfig.TREND_MIN_DATA:
        return TrendDirection.NEUTRAL, 0.0
    short_w, medium_w, long_w = EngineConfig.TREND_WINDOWS
    short_term = calculate_mean(numbers[:short_w])
    medium_term = calculate_mean(numbers[:medium_w])
    long_term = calculate_mean(numbers[:long_w])

    if short_term > medium_term > long_term:
        strength = (short_term - long_term) / long_term if long_term else 0.0
        return TrendDirection.UPWARD, abs(strength)
    if short_term < medium_term < long_term:
        strength = (long_term - short_term) / long_term if long_term else 0.0
        return TrendDirection.DOWNWARD, abs(strength)
    return TrendDirection.NEUTRAL, 0.0


def calculate_stake(confidence: float, trend_strength: float) -> StakeSuggestion:
    stake = (StakeConfig.BASE_STAKE * (confidence / 100)
             * (1 + trend_strength * StakeConfig.TREND_MULTIPLIER))

    if confidence > StakeConfig.HIGH_CONFIDENCE and trend_strength > StakeConfig.HIGH_TREND_STRENGTH:
        return StakeSuggestion(round(stake, 2), StakeLevel.HIGH_CONFIDENCE, RiskLevel.LOW)
    if confidence > StakeConfig.MEDIUM_CONFIDENCE:
        return StakeSuggestion(round(stake * StakeConfig.MEDIUM_FRACTION, 2), StakeLevel.MEDIUM, RiskLevel.MEDIUM)
    return StakeSuggestion(round(stake * StakeConfig.LOW_FRACTION, 2), StakeLevel.LOW, RiskLevel.HIGH)


# === ENSEMBLE ===
@dataclass(frozen=True)
class VoteTally:
    big_votes: float
    small_votes: float
    outcome: str
    confidence: float
    big_share: float
    small_share: float


def tally_votes(votes: Sequence[ModelVote]) -> VoteTally:
    """
    Weighted split of a vote list.

    A population accepted by `build_population` always totals 1.0, so the
    near-zero guard only fires for hand-built vote lists.
    """
    big_votes = math.fsum(v.weight for v in votes if v.vote == BIG)
    small_votes = math.fsum(v.weight for v in votes if v.vote == SMALL)
    total = big_votes + small_votes

    if total < 1e-9:
        confidence = 50.0
        big_share = small_share = 0.5
    else:
        confidence = max(big_votes, small_votes) / total * 100
        big_share, small_share = big_votes / total, small_votes / total

    # ties go to SMALL
    outcome = BIG if big_votes > small_votes else SMALL
    return VoteTally(big_votes, small_votes, outcome, confidence, big_share, small_share)


class EnsembleEngine:
    """
    Weighted vote over a fixed population of heuristic models.

    The population is built once and never mutated, so one engine can be
    shared by concurrent callers. `predict` never raises for a well-formed
    (possibly short) newest-first history.
    """

    def __init__(self, counts: Optional[Dict[str, int]] = None,
                 shares: Optional[Dict[str, float]] = None,
                 draw_interval: int = EngineConfig.DRAW_INTERVAL_SECONDS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.models = build_population(counts, shares)
        self.draw_interval = draw_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info(f"Ensemble ready with {len(self.models)} models: "
                    + ", ".join(f"{fam}={s['count']}" for fam, s in self.summary().items()))

    @property
    def model_count(self) -> int:
        return len(self.models)

    def summary(self) -> Dict[str, Dict[str, float]]:
        return population_summary(self.models)

    def evaluate(self, history: Sequence[DrawRecord], executor: Optional[Executor] = None) -> List[ModelVote]:
        numbers = [d.number for d in history]
        outcomes = [d.outcome for d in history]

        def run(model: Model) -> ModelVote:
            return ModelVote(model.id, model.family, evaluate_model(model, numbers, outcomes), model.weight)

        if executor is not None:
            return list(executor.map(run, self.models))
        return [run(m) for m in self.models]

    def predict(self, history: Sequence[DrawRecord], executor: Optional[Executor] = None) -> PredictionResult:
        votes = self.evaluate(history, executor)
        tally = tally_votes(votes)
        outcome, confidence = tally.outcome, tally.confidence

        direction, strength = analyze_trend([d.number for d in history])
        stake = calculate_stake(confidence, strength)
        next_issue_time = (self._clock() + timedelta(seconds=self.draw_interval)).isoformat()

        logger.debug(f"Vote split BIG={tally.big_votes:.4f} SMALL={tally.small_votes:.4f} -> {outcome} ({confidence:.2f}%)")

        return PredictionResult(
            outcome=outcome,
            confidence=round(confidence, 2),
            model_count=len(self.models),
            trend_direction=direction,
            trend_strength=strength,
            suggested_stake=stake,
            next_issue_time=next_issue_time,
            model_breakdown=ModelBreakdown(tally.big_share, tally.small_share, len(votes)),
            votes=tuple(votes),
        )
