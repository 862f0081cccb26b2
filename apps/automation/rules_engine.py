"""
Rules Engine

Evaluates the automation rule table against a freshly scored deal and
produces follow-up tasks for the agent. Owns the duplicate/cooldown policy;
the deal service owns reading and writing the task records.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from apps.automation.config import automation_settings
from apps.automation.rules import AUTOMATION_RULES, AutomationRule
from src.adapters.base_adapter import (
    Deal,
    EngagementMetrics,
    Task,
    TaskStatus,
    Temperature,
)

logger = logging.getLogger(__name__)


def _new_task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


class RuleEngine:
    """
    Evaluates rules and builds automated tasks.

    Usage:
        engine = RuleEngine(db)
        tasks = engine.evaluate(deal, metrics, temperature, existing_tasks)
    """

    def __init__(
        self,
        db=None,
        settings: Optional[Dict[str, Any]] = None,
        rules: Optional[Sequence[AutomationRule]] = None,
        id_factory: Callable[[], str] = _new_task_id,
    ):
        """
        Args:
            db: CRMDatabase instance used to load automation settings (optional)
            settings: Explicit settings; takes precedence over db settings
            rules: Rule table, highest threshold first (default AUTOMATION_RULES)
            id_factory: Produces ids for new tasks
        """
        self.db = db
        self.rules = tuple(rules) if rules is not None else AUTOMATION_RULES
        self.id_factory = id_factory
        self._explicit_settings = settings
        self._settings_cache = None

    def _get_settings(self) -> Dict[str, Any]:
        """Resolve settings (database, environment, default), then overlay explicit ones."""
        if self._settings_cache is None:
            settings = automation_settings(self.db, self.rules)
            if self._explicit_settings:
                settings.update(self._explicit_settings)
            self._settings_cache = settings
        return self._settings_cache

    def refresh_settings(self) -> None:
        self._settings_cache = None

    def match_rule(self, score: int) -> Optional[AutomationRule]:
        """First rule whose band contains the score."""
        for rule in self.rules:
            if rule.matches(score):
                return rule
        return None

    def cooldown_for(self, rule: AutomationRule) -> timedelta:
        """Per-rule setting, then the global setting, then the rule default."""
        settings = self._get_settings()
        hours = settings.get(rule.cooldown_key)
        if hours is None:
            hours = settings.get('task_cooldown_hours')
        if hours is None:
            return rule.cooldown
        return timedelta(hours=float(hours))

    def is_duplicate(
        self,
        rule: AutomationRule,
        deal_id: str,
        existing_tasks: Iterable[Task],
        now: Optional[datetime] = None
    ) -> bool:
        """
        True when an automated task for (deal_id, trigger_kind) is still
        pending, or was created inside the rule's cooldown window.
        """
        now = now or datetime.now()
        window_start = now - self.cooldown_for(rule)

        for task in existing_tasks:
            if not task.is_automated or task.deal_id != deal_id:
                continue
            if task.trigger_kind != rule.trigger_kind:
                continue
            if task.status == TaskStatus.PENDING:
                return True
            if task.created_at >= window_start:
                return True
        return False

    def evaluate(
        self,
        deal: Deal,
        metrics: EngagementMetrics,
        temperature: Temperature,
        existing_tasks: Iterable[Task] = (),
        now: Optional[datetime] = None
    ) -> List[Task]:
        """
        Evaluate the rule table for one deal.

        Returns:
            Zero or one new task. Existing tasks are never modified.
        """
        settings = self._get_settings()
        now = now or datetime.now()

        # Global kill switch
        if not settings.get('rules_engine_enabled', True):
            logger.info("Rules engine is disabled globally")
            return []

        score = metrics.total_score
        rule = self.match_rule(score)
        if rule is None:
            logger.debug(f"[{deal.id}] No rule matches score {score}")
            return []

        if not settings.get(rule.enabled_key, True):
            logger.info(f"[{rule.name}] Skipped — disabled")
            return []

        if self.is_duplicate(rule, deal.id, existing_tasks, now):
            logger.info(
                f"[{rule.name}] Cooldown skip for deal {deal.id} "
                f"({rule.trigger_kind} already pending or recent)"
            )
            return []

        task = self._build_task(rule, deal, score, temperature, now)
        logger.info(
            f"[{rule.name}] Deal {deal.id} score {score} → "
            f"{task.priority.value} task due {task.due_date.isoformat()}"
        )
        return [task]

    def _build_task(
        self,
        rule: AutomationRule,
        deal: Deal,
        score: int,
        temperature: Temperature,
        now: datetime
    ) -> Task:
        deal_name = deal.name or deal.id
        return Task(
            id=self.id_factory(),
            deal_id=deal.id,
            client_id=deal.client_id,
            type=rule.task_type,
            priority=rule.priority,
            title=rule.title_template.format(deal_name=deal_name, score=score),
            description=rule.description_template.format(deal_name=deal_name, score=score),
            due_date=now + rule.due_offset,
            status=TaskStatus.PENDING,
            is_automated=True,
            automation_trigger={
                'trigger': rule.trigger_kind,
                'rule': rule.name,
                'score': score,
                'threshold': rule.min_score,
                'temperature': temperature.value,
                'generated_at': now.isoformat(),
            },
            created_at=now,
        )

