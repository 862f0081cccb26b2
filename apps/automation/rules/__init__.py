"""
Automation Rules Registry

Declarative score-band rules for follow-up task generation. Rules are
evaluated highest threshold first and the first match wins.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from src.adapters.base_adapter import TaskPriority

DEFAULT_COOLDOWN_HOURS = 4


@dataclass(frozen=True)
class AutomationRule:
    """One score band and the task it produces."""
    name: str
    trigger_kind: str              # dedup key component, recorded on the task
    min_score: int                 # inclusive
    max_score: Optional[int]       # exclusive; None = unbounded
    task_type: str
    priority: TaskPriority
    due_offset: timedelta
    title_template: str
    description_template: str
    cooldown: timedelta = timedelta(hours=DEFAULT_COOLDOWN_HOURS)

    def matches(self, score: int) -> bool:
        if score < self.min_score:
            return False
        return self.max_score is None or score < self.max_score

    @property
    def enabled_key(self) -> str:
        return f'rule_{self.name}_enabled'

    @property
    def cooldown_key(self) -> str:
        return f'rule_{self.name}_cooldown_hours'


AUTOMATION_RULES: Tuple[AutomationRule, ...] = (
    AutomationRule(
        name='hot_lead',
        trigger_kind='high_engagement',
        min_score=80,
        max_score=None,
        task_type='immediate_outreach',
        priority=TaskPriority.HIGH,
        due_offset=timedelta(hours=2),
        title_template='Hot Lead: Call {deal_name} immediately',
        description_template=(
            'High engagement score ({score}/100) detected. '
            'Client shows strong interest.'
        ),
    ),
    AutomationRule(
        name='warm_lead',
        trigger_kind='medium_engagement',
        min_score=50,
        max_score=80,
        task_type='scheduled_follow_up',
        priority=TaskPriority.MEDIUM,
        due_offset=timedelta(hours=24),
        title_template='Warm Lead: Follow up with {deal_name}',
        description_template=(
            'Moderate engagement score ({score}/100). Client showed interest.'
        ),
    ),
    AutomationRule(
        name='cold_lead',
        trigger_kind='low_engagement',
        min_score=1,
        max_score=50,
        task_type='nurture_campaign_enrollment',
        priority=TaskPriority.LOW,
        due_offset=timedelta(days=7),
        title_template='Cold Lead: Add {deal_name} to nurture campaign',
        description_template=(
            'Low engagement score ({score}/100). Consider nurture sequence.'
        ),
    ),
)


RULE_REGISTRY = {rule.name: rule for rule in AUTOMATION_RULES}
