"""Tests for the deal stage state machine."""

import pytest

from src.adapters.base_adapter import DealStage, DealStatus, Temperature, STAGE_ORDER
from src.core.deal_stages import (
    ENGAGED_SCORE_FLOOR,
    StageContext,
    StageTrigger,
    eligible_stage,
    is_valid_status_change,
    later_stage,
    next_manual_stage,
    next_stage,
    resolve_status_change,
    stage_requirements,
    suggest_next_stage,
)
from src.core.exceptions import InvalidTransitionError


def context(**overrides):
    fields = {'link_shared': True, 'has_view': False, 'score': 0, 'temperature': Temperature.COLD}
    fields.update(overrides)
    return StageContext(**fields)


class TestAutomaticProgression:

    def test_created_to_shared(self):
        assert next_stage(DealStage.CREATED, context()) == DealStage.SHARED

    def test_nothing_shared_stays_created(self):
        assert next_stage(DealStage.CREATED, context(link_shared=False)) == DealStage.CREATED

    def test_view_reaches_accessed(self):
        assert next_stage(DealStage.SHARED, context(has_view=True)) == DealStage.ACCESSED

    def test_score_floor_is_exclusive(self):
        at_floor = context(has_view=True, score=ENGAGED_SCORE_FLOOR)
        above = context(has_view=True, score=ENGAGED_SCORE_FLOOR + 1)
        assert next_stage(DealStage.ACCESSED, at_floor) == DealStage.ACCESSED
        assert next_stage(DealStage.ACCESSED, above) == DealStage.ENGAGED

    def test_single_strong_session_crosses_several_stages(self):
        ctx = context(has_view=True, score=82, temperature=Temperature.HOT)
        assert next_stage(DealStage.CREATED, ctx) == DealStage.QUALIFIED

    def test_manual_triggers_never_fire_automatically(self):
        ctx = context(has_view=True, score=100, temperature=Temperature.HOT)
        assert eligible_stage(DealStage.QUALIFIED, ctx) == DealStage.QUALIFIED
        assert eligible_stage(DealStage.ADVANCED, ctx) == DealStage.ADVANCED

    @pytest.mark.parametrize("current", STAGE_ORDER)
    def test_never_regresses(self, current):
        ctx = context(link_shared=False)
        assert next_stage(current, ctx) == current
        assert STAGE_ORDER.index(next_stage(current, ctx)) >= STAGE_ORDER.index(current)

    def test_later_stage(self):
        assert later_stage(DealStage.ENGAGED, DealStage.SHARED) == DealStage.ENGAGED
        assert later_stage(DealStage.SHARED, DealStage.ENGAGED) == DealStage.ENGAGED

    def test_suggest_next_stage(self):
        assert suggest_next_stage(DealStage.SHARED, context()) is None
        assert suggest_next_stage(DealStage.SHARED, context(has_view=True)) == DealStage.ACCESSED
        assert suggest_next_stage(DealStage.QUALIFIED, context()) == DealStage.ADVANCED
        assert suggest_next_stage(DealStage.CLOSED, context()) is None


class TestManualTransitions:

    def test_advance_from_qualified(self):
        assert next_manual_stage(DealStage.QUALIFIED, StageTrigger.MANUAL_ADVANCE) == DealStage.ADVANCED

    def test_advance_from_wrong_stage(self):
        with pytest.raises(InvalidTransitionError):
            next_manual_stage(DealStage.ENGAGED, StageTrigger.MANUAL_ADVANCE)

    def test_close_from_advanced(self):
        assert next_manual_stage(DealStage.ADVANCED, StageTrigger.MANUAL_CLOSE) == DealStage.CLOSED

    def test_requirements(self):
        assert 'Client accessed link' in stage_requirements(DealStage.ACCESSED)
        assert all(stage_requirements(stage) for stage in STAGE_ORDER)


class TestStatusTransitions:

    @pytest.mark.parametrize("current,new,allowed", [
        (DealStatus.ACTIVE, DealStatus.QUALIFIED, True),
        (DealStatus.ACTIVE, DealStatus.CLOSED_WON, False),
        (DealStatus.QUALIFIED, DealStatus.CLOSED_WON, True),
        (DealStatus.NURTURING, DealStatus.QUALIFIED, True),
        (DealStatus.CLOSED_WON, DealStatus.ACTIVE, False),
        (DealStatus.CLOSED_LOST, DealStatus.ACTIVE, True),
        (DealStatus.ACTIVE, DealStatus.ACTIVE, True),
    ])
    def test_status_table(self, current, new, allowed):
        assert is_valid_status_change(current, new) is allowed

    def test_closing_moves_stage_to_closed(self):
        stage, status = resolve_status_change(
            DealStage.QUALIFIED, DealStatus.QUALIFIED, DealStatus.CLOSED_WON)
        assert stage == DealStage.CLOSED
        assert status == DealStatus.CLOSED_WON

    def test_non_closing_keeps_stage(self):
        stage, status = resolve_status_change(
            DealStage.ENGAGED, DealStatus.ACTIVE, DealStatus.NURTURING)
        assert stage == DealStage.ENGAGED
        assert status == DealStatus.NURTURING

    def test_invalid_change_raises(self):
        with pytest.raises(InvalidTransitionError):
            resolve_status_change(DealStage.ENGAGED, DealStatus.CLOSED_WON, DealStatus.ACTIVE)
