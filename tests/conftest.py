"""
pytest configuration and fixtures for SwipeLink CRM tests.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.adapters.base_adapter import Deal, DealStage, SessionData  # noqa: E402

FIXED_NOW = datetime(2026, 3, 14, 15, 0, 0)


@pytest.fixture
def project_root():
    """Return the project root path."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed evaluation time shared by the clock fixture."""
    return FIXED_NOW


@pytest.fixture
def clock(now):
    """Clock callable for DealService that always returns `now`."""
    return lambda: now


@pytest.fixture
def test_db_path(tmp_path):
    """Create a temporary database path for testing."""
    return tmp_path / "test_swipelink.db"


@pytest.fixture
def test_db(test_db_path):
    """Create a temporary test database with schema."""
    from src.core.database import CRMDatabase
    db = CRMDatabase(str(test_db_path))
    yield db
    # Cleanup happens automatically when temp directory is removed


@pytest.fixture
def make_session(now):
    """Factory for SessionData ending one hour before `now`."""
    def _make(**overrides):
        fields = {
            'session_id': 'sess-001',
            'start_time': now - timedelta(hours=1, minutes=15),
            'end_time': now - timedelta(hours=1),
            'duration': 900,
            'total_properties': 25,
        }
        fields.update(overrides)
        return SessionData(**fields)
    return _make


@pytest.fixture
def hot_session(make_session):
    """Strong session: 20 viewed, 6 liked, 2 considered, 15 minutes, return visit."""
    return make_session(
        properties_viewed=20,
        properties_liked=6,
        properties_considered=2,
        return_visit=True,
    )


@pytest.fixture
def empty_session():
    """Session with no views and no timestamps."""
    return SessionData(session_id='sess-empty')


@pytest.fixture
def make_deal(now):
    """Factory for Deal records created a day before `now`."""
    def _make(**overrides):
        fields = {
            'id': 'deal-001',
            'name': 'Lakeview Collection',
            'link_id': 'link-001',
            'agent_id': 'agent-1',
            'client_id': 'client-1',
            'stage': DealStage.SHARED,
            'property_ids': [f'prop-{i}' for i in range(25)],
            'created_at': now - timedelta(days=1),
            'updated_at': now - timedelta(days=1),
        }
        fields.update(overrides)
        return Deal(**fields)
    return _make


@pytest.fixture
def stored_deal(test_db, make_deal):
    """A shared deal persisted in the test database."""
    deal = make_deal()
    test_db.create_deal(deal)
    return deal


@pytest.fixture
def rule_engine(test_db):
    from apps.automation.rules_engine import RuleEngine
    return RuleEngine(db=test_db)


@pytest.fixture
def service(test_db, rule_engine, clock):
    """DealService over the test database with a fixed clock."""
    from src.core.deal_service import DealService
    return DealService(test_db, rule_engine=rule_engine, clock=clock)

