"""
Deal Stage State Machine

Computes the next eligible lifecycle stage for a deal:

    created -> shared -> accessed -> engaged -> qualified -> advanced -> closed

Automatic progression only ever moves forward. Each transition is keyed by
a trigger; automatic triggers are checked against a StageContext, manual
triggers never fire automatically and are reached through the explicit
actions at the bottom of this module.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import logging

from src.adapters.base_adapter import DealStage, DealStatus, Temperature, STAGE_ORDER
from src.core.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

# Score a deal must exceed before it counts as engaged
ENGAGED_SCORE_FLOOR = 30


class StageTrigger(str, Enum):
    """What moves a deal out of a stage."""
    LINK_SHARED = 'link_shared'
    VIEW_RECORDED = 'view_recorded'
    SCORE_ABOVE_FLOOR = 'score_above_floor'
    WARM_OR_HOT = 'warm_or_hot'
    MANUAL_ADVANCE = 'manual_advance'
    MANUAL_CLOSE = 'manual_close'


MANUAL_TRIGGERS = (StageTrigger.MANUAL_ADVANCE, StageTrigger.MANUAL_CLOSE)


@dataclass(frozen=True)
class StageContext:
    """Facts known at recompute time."""
    link_shared: bool = False
    has_view: bool = False
    score: int = 0
    temperature: Temperature = Temperature.COLD


# current stage -> (trigger, next stage)
TRANSITIONS: Dict[DealStage, Tuple[StageTrigger, DealStage]] = {
    DealStage.CREATED: (StageTrigger.LINK_SHARED, DealStage.SHARED),
    DealStage.SHARED: (StageTrigger.VIEW_RECORDED, DealStage.ACCESSED),
    DealStage.ACCESSED: (StageTrigger.SCORE_ABOVE_FLOOR, DealStage.ENGAGED),
    DealStage.ENGAGED: (StageTrigger.WARM_OR_HOT, DealStage.QUALIFIED),
    DealStage.QUALIFIED: (StageTrigger.MANUAL_ADVANCE, DealStage.ADVANCED),
    DealStage.ADVANCED: (StageTrigger.MANUAL_CLOSE, DealStage.CLOSED),
}


TRIGGER_CHECKS: Dict[StageTrigger, Callable[[StageContext], bool]] = {
    StageTrigger.LINK_SHARED: lambda ctx: ctx.link_shared,
    StageTrigger.VIEW_RECORDED: lambda ctx: ctx.has_view,
    StageTrigger.SCORE_ABOVE_FLOOR: lambda ctx: ctx.score > ENGAGED_SCORE_FLOOR,
    StageTrigger.WARM_OR_HOT: lambda ctx: ctx.temperature in (Temperature.WARM, Temperature.HOT),
    StageTrigger.MANUAL_ADVANCE: lambda ctx: False,
    StageTrigger.MANUAL_CLOSE: lambda ctx: False,
}


STAGE_REQUIREMENTS: Dict[DealStage, List[str]] = {
    DealStage.CREATED: ['Property collection prepared', 'Link generated'],
    DealStage.SHARED: ['Link shared with client', 'Initial contact made'],
    DealStage.ACCESSED: ['Client accessed link', 'Properties viewed'],
    DealStage.ENGAGED: ['Client engagement detected', 'Properties liked/considered'],
    DealStage.QUALIFIED: ['Client qualification confirmed', 'Budget verified'],
    DealStage.ADVANCED: ['Property showing completed', 'Offer interest expressed'],
    DealStage.CLOSED: ['Deal finalized', 'Commission secured'],
}


STATUS_TRANSITIONS: Dict[DealStatus, Tuple[DealStatus, ...]] = {
    DealStatus.ACTIVE: (DealStatus.QUALIFIED, DealStatus.NURTURING, DealStatus.CLOSED_LOST),
    DealStatus.QUALIFIED: (DealStatus.NURTURING, DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST),
    DealStatus.NURTURING: (DealStatus.QUALIFIED, DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST),
    DealStatus.CLOSED_WON: (),
    DealStatus.CLOSED_LOST: (DealStatus.ACTIVE,),
}

CLOSED_STATUSES = (DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST)


def later_stage(a: DealStage, b: DealStage) -> DealStage:
    """Return whichever stage is further along the lifecycle."""
    return a if STAGE_ORDER.index(a) >= STAGE_ORDER.index(b) else b


def eligible_stage(current: DealStage, context: StageContext) -> DealStage:
    """
    Walk the transition table from the current stage while each
    automatic trigger is satisfied.

    Several stages can be crossed in one call (created -> engaged from a
    single strong session). Manual triggers stop the walk.
    """
    stage = current
    while stage in TRANSITIONS:
        trigger, target = TRANSITIONS[stage]
        if trigger in MANUAL_TRIGGERS or not TRIGGER_CHECKS[trigger](context):
            break
        stage = target
    return stage


def next_stage(current: DealStage, context: StageContext) -> DealStage:
    """max(current, eligible) under lifecycle order; never regresses."""
    return later_stage(current, eligible_stage(current, context))


def stage_requirements(stage: DealStage) -> List[str]:
    return list(STAGE_REQUIREMENTS.get(stage, []))


def next_manual_stage(current: DealStage, trigger: StageTrigger) -> DealStage:
    """
    Apply a manual trigger (advance or close).

    Raises:
        InvalidTransitionError: the trigger does not leave the current stage
    """
    transition = TRANSITIONS.get(current)
    if transition is None or transition[0] != trigger:
        raise InvalidTransitionError(
            f"Cannot apply {trigger.value} from stage {current.value}"
        )
    return transition[1]


def is_valid_status_change(current: DealStatus, new: DealStatus) -> bool:
    return current == new or new in STATUS_TRANSITIONS.get(current, ())


def resolve_status_change(
    stage: DealStage,
    current: DealStatus,
    new: DealStatus
) -> Tuple[DealStage, DealStatus]:
    """
    Validate a manual status update and return the resulting (stage, status).

    Closing a deal (won or lost) moves it to the closed stage.
    """
    if not is_valid_status_change(current, new):
        raise InvalidTransitionError(
            f"Invalid status change from {current.value} to {new.value}"
        )
    if new in CLOSED_STATUSES:
        stage = DealStage.CLOSED
    return stage, new


def suggest_next_stage(current: DealStage, context: StageContext) -> Optional[DealStage]:
    """The stage an agent would move to next, or None when waiting on the client."""
    transition = TRANSITIONS.get(current)
    if transition is None:
        return None
    trigger, target = transition
    if trigger in MANUAL_TRIGGERS or TRIGGER_CHECKS[trigger](context):
        return target
    return None
