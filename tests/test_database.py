"""Tests for the SQLite deal store."""

from datetime import timedelta

import pytest

from src.adapters.base_adapter import (
    DealFilters,
    DealStage,
    DealStatus,
    Task,
    TaskPriority,
    TaskStatus,
    Temperature,
)


@pytest.fixture
def populated_db(test_db, make_deal, now):
    """Twelve deals created an hour apart, newest last."""
    for i in range(12):
        test_db.create_deal(make_deal(
            id=f'deal-{i:02d}',
            name=f'Mountain Cabin {i}' if i % 3 == 0 else f'Downtown Condo {i}',
            agent_id='agent-1' if i % 2 == 0 else 'agent-2',
            stage=DealStage.ENGAGED if i < 4 else DealStage.SHARED,
            status=DealStatus.NURTURING if i == 5 else DealStatus.ACTIVE,
            temperature=Temperature.HOT if i == 7 else Temperature.COLD,
            deal_value=100000 * (i + 1),
            created_at=now - timedelta(hours=12 - i),
        ))
    return test_db


class TestSettings:

    def test_seeded_defaults(self, test_db):
        assert test_db.get_setting('rules_engine_enabled') is True
        assert test_db.get_setting('task_cooldown_hours') == 4
        assert test_db.get_setting('rule_cold_lead_enabled') is True

    def test_missing_setting_default(self, test_db):
        assert test_db.get_setting('nope', 'fallback') == 'fallback'

    def test_set_setting(self, test_db):
        assert test_db.set_setting('task_cooldown_hours', 12, updated_by='tests') is True
        assert test_db.get_setting('task_cooldown_hours') == 12

    def test_set_unknown_setting(self, test_db):
        assert test_db.set_setting('not_a_setting', 'x') is False

    def test_all_settings_by_category(self, test_db):
        keys = {s['key'] for s in test_db.get_all_settings(category='automation')}
        assert 'task_cooldown_hours' in keys
        assert 'engagement_history_limit' not in keys

    def test_reopening_keeps_settings(self, test_db, test_db_path):
        from src.core.database import CRMDatabase
        test_db.set_setting('rules_engine_enabled', False)
        reopened = CRMDatabase(str(test_db_path))
        assert reopened.get_setting('rules_engine_enabled') is False


class TestDeals:

    def test_round_trip(self, test_db, make_deal, now):
        deal = make_deal(tags=['vip'], deal_value=450000.0, last_activity_at=now)
        test_db.create_deal(deal)
        assert test_db.get_deal(deal.id) == deal

    def test_missing(self, test_db):
        assert test_db.get_deal('missing') is None

    def test_update(self, stored_deal, test_db):
        stored_deal.engagement_score = 55
        stored_deal.temperature = Temperature.WARM
        assert test_db.update_deal(stored_deal) is True
        assert test_db.get_deal(stored_deal.id).engagement_score == 55


class TestGetDeals:

    def test_newest_first(self, populated_db):
        listing = populated_db.get_deals(limit=3)
        assert [d.id for d in listing['data']] == ['deal-11', 'deal-10', 'deal-09']

    def test_pagination(self, populated_db):
        listing = populated_db.get_deals(page=3, limit=5)
        assert [d.id for d in listing['data']] == ['deal-01', 'deal-00']
        assert listing['pagination'] == {'page': 3, 'limit': 5, 'total': 12, 'total_pages': 3}

    def test_page_past_end(self, populated_db):
        listing = populated_db.get_deals(page=9, limit=5)
        assert listing['data'] == []
        assert listing['pagination']['total'] == 12

    def test_page_and_limit_clamped(self, populated_db):
        listing = populated_db.get_deals(page=0, limit=500)
        assert listing['pagination']['page'] == 1
        assert listing['pagination']['limit'] == 100
        assert len(listing['data']) == 12

        listing = populated_db.get_deals(page=-2, limit=0)
        assert listing['pagination']['limit'] == 1
        assert listing['pagination']['total_pages'] == 12

    def test_empty(self, test_db):
        listing = test_db.get_deals()
        assert listing['data'] == []
        assert listing['pagination']['total_pages'] == 0

    def test_filter_stage(self, populated_db):
        listing = populated_db.get_deals(DealFilters(stage=[DealStage.ENGAGED]))
        assert {d.id for d in listing['data']} == {'deal-00', 'deal-01', 'deal-02', 'deal-03'}

    def test_filter_status_list(self, populated_db):
        listing = populated_db.get_deals(DealFilters(status=[DealStatus.NURTURING, DealStatus.QUALIFIED]))
        assert [d.id for d in listing['data']] == ['deal-05']

    def test_filter_temperature(self, populated_db):
        listing = populated_db.get_deals(DealFilters(temperature=[Temperature.HOT]))
        assert [d.id for d in listing['data']] == ['deal-07']

    def test_search_is_case_insensitive(self, populated_db):
        listing = populated_db.get_deals(DealFilters(search='CABIN'))
        assert {d.id for d in listing['data']} == {'deal-00', 'deal-03', 'deal-06', 'deal-09'}

    def test_filter_agent(self, populated_db):
        listing = populated_db.get_deals(DealFilters(agent_id='agent-2'))
        assert listing['pagination']['total'] == 6

    def test_filter_date_range(self, populated_db, now):
        filters = DealFilters(start_date=now - timedelta(hours=3), end_date=now - timedelta(hours=2))
        listing = populated_db.get_deals(filters)
        assert [d.id for d in listing['data']] == ['deal-10', 'deal-09']

    def test_filter_value_range(self, populated_db):
        listing = populated_db.get_deals(DealFilters(min_value=200000, max_value=400000))
        assert {d.id for d in listing['data']} == {'deal-01', 'deal-02', 'deal-03'}

    def test_combined_filters(self, populated_db):
        filters = DealFilters(search='condo', agent_id='agent-1', stage=[DealStage.SHARED])
        listing = populated_db.get_deals(filters)
        assert {d.id for d in listing['data']} == {'deal-04', 'deal-08', 'deal-10'}


class TestTasks:

    def _task(self, task_id, deal_id, created_at, automated=True):
        return Task(
            id=task_id,
            deal_id=deal_id,
            type='scheduled_follow_up',
            priority=TaskPriority.MEDIUM,
            title='Follow up',
            due_date=created_at + timedelta(hours=24),
            is_automated=automated,
            automation_trigger={'trigger': 'medium_engagement', 'score': 60} if automated else {},
            created_at=created_at,
        )

    def test_insert_and_read(self, test_db, stored_deal, now):
        tasks = [
            self._task('t1', stored_deal.id, now - timedelta(hours=2)),
            self._task('t2', stored_deal.id, now, automated=False),
        ]
        assert test_db.insert_tasks(tasks) == 2

        all_tasks = test_db.get_tasks_for_deal(stored_deal.id)
        assert [t.id for t in all_tasks] == ['t2', 't1']
        assert all_tasks[1].trigger_kind == 'medium_engagement'

        automated = test_db.get_tasks_for_deal(stored_deal.id, automated_only=True)
        assert [t.id for t in automated] == ['t1']

    def test_insert_nothing(self, test_db):
        assert test_db.insert_tasks([]) == 0

    def test_update_status(self, test_db, stored_deal, now):
        test_db.insert_tasks([self._task('t1', stored_deal.id, now)])

        assert test_db.update_task_status('t1', TaskStatus.IN_PROGRESS) is True
        assert test_db.get_task('t1').completed_at is None

        assert test_db.update_task_status('t1', TaskStatus.DISMISSED) is True
        task = test_db.get_task('t1')
        assert task.status == TaskStatus.DISMISSED
        assert task.completed_at is not None

    def test_update_missing_task(self, test_db):
        assert test_db.update_task_status('nope', TaskStatus.COMPLETED) is False


class TestEngagementHistory:

    def test_metrics_round_trip(self, test_db, stored_deal):
        test_db.insert_engagement_session({
            'session_id': 's1',
            'deal_id': stored_deal.id,
            'engagement_score': 40,
            'metrics': {'total_score': 40},
        })
        history = test_db.get_engagement_history(stored_deal.id)
        assert history[0]['metrics'] == {'total_score': 40}

    def test_limit(self, test_db, stored_deal):
        for i in range(4):
            test_db.insert_engagement_session({
                'session_id': f's{i}',
                'deal_id': stored_deal.id,
                'recorded_at': f'2026-03-14T09:0{i}:00',
            })
        history = test_db.get_engagement_history(stored_deal.id, limit=2)
        assert [h['session_id'] for h in history] == ['s3', 's2']
