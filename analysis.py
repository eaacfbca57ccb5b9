"""
Descriptive analysis of draw history.

All functions take newest-first sequences, matching what the engine consumes.
Nothing here feeds the ensemble vote; it backs the /api/history payload.
"""
import math
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy import stats

from config import GameConstants

BIG = GameConstants.BIG
SMALL = GameConstants.SMALL


def _opposite(outcome: str) -> str:
    return SMALL if outcome == BIG else BIG


# === HISTORY SUMMARY ===
def chi_square_uniformity(numbers: Sequence[float], bins: int = 10, value_range=(0, 100)) -> float:
    """p-value of the numbers being uniform over `bins` equal-width bins."""
    if len(numbers) < bins:
        return 1.0
    observed, _ = np.histogram(numbers, bins=bins, range=value_range)
    expected = np.full(bins, len(numbers) / bins)
    chi2 = np.sum((observed - expected) ** 2 / expected)
    return float(1 - stats.chi2.cdf(chi2, df=bins - 1))


def analyze_trends(records) -> Optional[Dict]:
    if not records or len(records) < 10:
        return None

    outcomes = [r.outcome for r in records]
    numbers = np.asarray([r.number for r in records], dtype=float)

    big_count = outcomes.count(BIG)
    small_count = outcomes.count(SMALL)

    streaks = detect_streaks(outcomes)
    current = streaks[0]
    max_streak = max(s['length'] for s in streaks)

    avg = float(numbers.mean())
    std = float(numbers.std())
    spread = std / avg * 100 if avg else 0.0

    patterns = analyze_sequences(outcomes)
    trend = trend_strength(numbers)

    return {
        'total_samples': len(records),
        'big_percentage': round(big_count / len(records) * 100, 2),
        'small_percentage': round(small_count / len(records) * 100, 2),
        'current_streak': current['length'],
        'streak_type': current['type'],
        'max_streak': max_streak,
        'average_number': round(avg, 2),
        'standard_deviation': round(std, 2),
        'volatility': f"{spread:.2f}%",
        'uniformity_p_value': round(chi_square_uniformity(numbers), 4),
        'alternating': patterns['alternating'],
        'cycles': patterns['cycles'],
        'pattern_prediction': predict_next_from_patterns(patterns, outcomes),
        'trend': trend,
        'trend_prediction': predict_with_trend(numbers, trend),
        'support_resistance': support_resistance(numbers),
        'risk_level': volatility(numbers)['risk_level'],
    }


# === PATTERN RECOGNIZER ===
def detect_alternating(outcomes: Sequence[str]) -> bool:
    if len(outcomes) < 3:
        return False
    return all(outcomes[i] != outcomes[i - 1] for i in range(1, len(outcomes)))


def detect_streaks(outcomes: Sequence[str]) -> List[Dict]:
    """Maximal runs, newest run first."""
    if not outcomes:
        return []
    streaks = []
    current_type, length = outcomes[0], 1
    for o in outcomes[1:]:
        if o == current_type:
            length += 1
        else:
            streaks.append({'type': current_type, 'length': length})
            current_type, length = o, 1
    streaks.append({'type': current_type, 'length': length})
    return streaks


def detect_cycles(outcomes: Sequence[str], max_cycle_length: int = 5) -> List[Dict]:
    cycles = []
    for cycle_len in range(2, max_cycle_length + 1):
        if len(outcomes) < cycle_len * 2:
            continue
        if all(outcomes[i] == outcomes[i + cycle_len] for i in range(cycle_len)):
            cycles.append({'length': cycle_len, 'pattern': list(outcomes[:cycle_len])})
    return cycles


def detect_clusters(outcomes: Sequence[str]) -> List[Dict]:
    clusters = []
    start = 0
    for i in range(1, len(outcomes) + 1):
        if i == len(outcomes) or outcomes[i] != outcomes[i - 1]:
            clusters.append({'type': outcomes[i - 1], 'length': i - start, 'start': start, 'end': i - 1})
            start = i
    return clusters


def analyze_sequences(outcomes: Sequence[str]) -> Dict:
    return {
        'alternating': detect_alternating(outcomes),
        'streaks': detect_streaks(outcomes),
        'cycles': detect_cycles(outcomes),
        'clusters': detect_clusters(outcomes),
    }


def predict_next_from_patterns(patterns: Dict, recent_outcomes: Sequence[str]) -> Optional[str]:
    if not recent_outcomes:
        return None
    if patterns['alternating']:
        return _opposite(recent_outcomes[0])

    streaks = patterns['streaks']
    if streaks:
        current = streaks[0]
        # short runs continue, long runs reverse
        if current['length'] < 3:
            return current['type']
        return _opposite(current['type'])

    if patterns['cycles']:
        cycle = patterns['cycles'][0]
        return cycle['pattern'][len(recent_outcomes) % cycle['length']]
    return None


# === TREND ANALYZER ===
def trend_strength(numbers: Sequence[float], short_window: int = 5, long_window: int = 20) -> Dict:
    if len(numbers) < long_window:
        return {'strength': 0.0, 'direction': 'NEUTRAL', 'confidence': 0.0}

    short_avg = float(np.mean(numbers[:short_window]))
    long_avg = float(np.mean(numbers[:long_window]))
    pct_diff = (short_avg - long_avg) / long_avg * 100 if long_avg else 0.0

    if pct_diff > 0:
        direction = 'UPWARD'
    elif pct_diff < 0:
        direction = 'DOWNWARD'
    else:
        direction = 'NEUTRAL'
    strength = abs(pct_diff)

    consistency = 0
    if len(numbers) >= short_window * 2:
        first = float(np.mean(numbers[:short_window]))
        second = float(np.mean(numbers[short_window:short_window * 2]))
        consistency = 1 if abs(first - second) < first * 0.1 else 0

    confidence = min(strength * 0.5 + consistency * 50, 100.0)
    return {'strength': strength, 'direction': direction, 'confidence': confidence}


def support_resistance(numbers: Sequence[float], sensitivity: float = 0.02) -> Dict:
    if len(numbers) < 20:
        return {'support': 0.0, 'resistance': 100.0, 'cluster_count': 0}

    ordered = sorted(numbers)
    clusters = []
    current = [ordered[0]]
    for value in ordered[1:]:
        gap = (value - current[-1]) / value if value else 0.0
        if gap < sensitivity:
            current.append(value)
        else:
            clusters.append(current)
            current = [value]
    clusters.append(current)

    # densest cluster first
    clusters.sort(key=len, reverse=True)
    return {
        'support': float(np.mean(clusters[0])),
        'resistance': float(np.mean(clusters[-1])),
        'cluster_count': len(clusters),
    }


def volatility(numbers: Sequence[float], period: int = 20) -> Dict:
    if len(numbers) < period:
        return {'volatility': 0.0, 'risk_level': 'LOW', 'annualized': 0.0}

    returns = [(numbers[i - 1] - numbers[i]) / numbers[i]
               for i in range(1, period) if numbers[i]]
    vol = float(np.std(returns, ddof=1)) * math.sqrt(365) if len(returns) > 1 else 0.0

    if vol > 0.3:
        risk = 'HIGH'
    elif vol > 0.15:
        risk = 'MEDIUM'
    else:
        risk = 'LOW'
    return {'volatility': vol, 'risk_level': risk, 'annualized': vol * 100}


def predict_with_trend(numbers: Sequence[float], trend: Dict) -> Dict:
    if len(numbers) < 10:
        return {'prediction': BIG, 'confidence': 50.0}

    last = numbers[0]
    if trend['direction'] in ('UPWARD', 'DOWNWARD') and trend['strength'] > 0.5:
        prediction = BIG if last >= GameConstants.BIG_THRESHOLD else SMALL
        confidence = min(trend['confidence'] * 1.2, 95.0)
    else:
        # weak trend: expect reversion toward the mean
        prediction = SMALL if last > float(np.mean(numbers)) else BIG
        confidence = 60.0
    return {'prediction': prediction, 'confidence': confidence}
