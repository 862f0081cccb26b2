"""Tests for the command-line runner."""

import json
import logging
from datetime import datetime, timedelta

import pytest

from apps.automation.run_rules import load_session, main, parse_enum_list
from src.adapters.base_adapter import DealStage, DealStatus
from src.core.database import CRMDatabase
from src.core.exceptions import InputError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ('SWIPELINK_DB_PATH', 'SWIPELINK_LOG_LEVEL', 'SWIPELINK_LOG_FILE'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def session_file(tmp_path):
    """Hot-lead session payload in the client's camelCase format."""
    end = datetime.now() - timedelta(hours=1)
    path = tmp_path / 'session.json'
    path.write_text(json.dumps({
        'sessionId': 'cli-session',
        'startTime': (end - timedelta(minutes=15)).isoformat(),
        'endTime': end.isoformat(),
        'duration': 900,
        'totalProperties': 25,
        'propertiesViewed': 20,
        'propertiesLiked': 6,
        'propertiesConsidered': 2,
        'returnVisit': True,
    }))
    return path


@pytest.fixture
def cli_db(tmp_path, make_deal):
    path = tmp_path / 'cli.db'
    db = CRMDatabase(str(path))
    db.create_deal(make_deal(id='deal-cli', name='Riverside Homes'))
    return path


def run(capsys, tmp_path, *argv):
    code = main(['--config', str(tmp_path / 'missing.yaml'), *argv])
    out = capsys.readouterr().out
    return code, json.loads(out) if code == 0 else out


class TestHelpers:

    def test_load_session(self, session_file):
        session = load_session(str(session_file))
        assert session.session_id == 'cli-session'
        assert session.properties_viewed == 20
        assert session.return_visit is True

    def test_load_session_missing(self, tmp_path):
        with pytest.raises(InputError):
            load_session(str(tmp_path / 'nope.json'))

    def test_load_session_not_an_object(self, tmp_path):
        path = tmp_path / 'list.json'
        path.write_text('[1, 2]')
        with pytest.raises(InputError):
            load_session(str(path))

    def test_parse_enum_list(self):
        assert parse_enum_list('active, closed-won', DealStatus) == [
            DealStatus.ACTIVE, DealStatus.CLOSED_WON]
        assert parse_enum_list(None, DealStage) == []
        with pytest.raises(InputError):
            parse_enum_list('active,open', DealStatus)


class TestScoreCommand:

    def test_score(self, capsys, tmp_path, session_file):
        code, output = run(capsys, tmp_path, 'score', '--session', str(session_file))
        assert code == 0
        assert output['metrics']['total_score'] == 82
        assert output['temperature'] == 'hot'
        assert 'Returning visitor' in output['insights']
        assert output['recommendations']

    def test_unreadable_session(self, capsys, tmp_path):
        bad = tmp_path / 'bad.json'
        bad.write_text('{not json')
        code, _ = run(capsys, tmp_path, 'score', '--session', str(bad))
        assert code == 1


class TestRecomputeCommand:

    def test_recompute(self, capsys, tmp_path, cli_db, session_file):
        code, output = run(capsys, tmp_path, '--db', str(cli_db),
                           'recompute', '--deal', 'deal-cli', '--session', str(session_file))

        assert code == 0
        assert output['dry_run'] is False
        assert output['deal']['stage'] == 'qualified'
        assert output['stage_changed'] is True
        assert len(output['tasks_generated']) == 1
        assert output['tasks_generated'][0]['priority'] == 'high'
        assert isinstance(output['deal']['property_ids'], list)

        db = CRMDatabase(str(cli_db))
        assert db.get_deal('deal-cli').engagement_score == 82
        assert len(db.get_tasks_for_deal('deal-cli')) == 1

    def test_dry_run(self, capsys, tmp_path, cli_db, session_file):
        code, output = run(capsys, tmp_path, '--db', str(cli_db),
                           'recompute', '--deal', 'deal-cli', '--session', str(session_file),
                           '--dry-run')

        assert code == 0
        assert output['dry_run'] is True
        assert len(output['tasks_generated']) == 1

        db = CRMDatabase(str(cli_db))
        assert db.get_deal('deal-cli').engagement_score == 0
        assert db.get_tasks_for_deal('deal-cli') == []

    def test_unknown_deal(self, capsys, tmp_path, cli_db, session_file):
        code, _ = run(capsys, tmp_path, '--db', str(cli_db),
                      'recompute', '--deal', 'missing', '--session', str(session_file))
        assert code == 1


class TestDealsCommand:

    def test_listing(self, capsys, tmp_path, cli_db):
        code, output = run(capsys, tmp_path, '--db', str(cli_db),
                           'deals', '--status', 'active', '--search', 'river', '--limit', '5')
        assert code == 0
        assert [d['id'] for d in output['data']] == ['deal-cli']
        assert output['data'][0]['property_ids'][:2] == ['prop-0', 'prop-1']
        assert output['data'][0]['tags'] == []
        assert output['pagination'] == {'page': 1, 'limit': 5, 'total': 1, 'total_pages': 1}

    def test_no_matches(self, capsys, tmp_path, cli_db):
        code, output = run(capsys, tmp_path, '--db', str(cli_db), 'deals', '--stage', 'closed')
        assert code == 0
        assert output['data'] == []

    def test_invalid_filter(self, capsys, tmp_path, cli_db):
        code, _ = run(capsys, tmp_path, '--db', str(cli_db), 'deals', '--status', 'open')
        assert code == 1
