import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the flat modules import when pytest runs from a checkout without install.
PROJECT_DIR = Path(__file__).resolve().parents[1]
if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from prediction_engine import DrawRecord  # noqa: E402


FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_history(numbers, start_issue=20260101000):
    """Newest-first DrawRecords from a newest-first list of numbers."""
    count = len(numbers)
    return [
        DrawRecord.from_result(str(start_issue + count - i), f"{n},3,7", "2026-01-01T00:00:00+00:00")
        for i, n in enumerate(numbers)
    ]


def alternating_history(count=60, newest=70, other=30):
    return make_history([newest if i % 2 == 0 else other for i in range(count)])


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
