from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.adapters.clock import FixedClock
from src.adapters.memory_store import InMemoryStore
from src.rules.loader import load_rules
from src.rules.models import Rules


@pytest.fixture
def rules() -> Rules:
    """Load the REAL rules file from the project root."""
    rules_path = Path(__file__).resolve().parent.parent / "rules.yaml"
    if not rules_path.exists():
        raise FileNotFoundError(f"Rules not found at {rules_path}")
    return load_rules(rules_path)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
