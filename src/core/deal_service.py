"""
SwipeLink Deal Service

Orchestrates scoring, temperature, stage progression and task automation
against a deal's stored state, and exposes the listing surface used by
the dashboard.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import threading
import uuid

from apps.automation.config import get_db_setting
from apps.automation.rules_engine import RuleEngine
from src.adapters.base_adapter import (
    Deal,
    DealFilters,
    DealStage,
    DealStatus,
    DealStore,
    EngagementMetrics,
    SessionData,
    Task,
    TaskStatus,
    Temperature,
)
from src.core.deal_stages import (
    StageContext,
    StageTrigger,
    CLOSED_STATUSES,
    next_stage,
    next_manual_stage,
    resolve_status_change,
)
from src.core.exceptions import (
    AutomationSideEffectError,
    DealNotFoundError,
    InvalidTransitionError,
)
from src.core.scoring_engine import ScoringEngine
from src.core.temperature import classify, temperature_change

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
TREND_WINDOW = 5
TREND_THRESHOLD = 5.0


@dataclass
class RecomputeResult:
    """Everything one recompute changed, for the caller to persist or return."""
    deal: Deal
    metrics: EngagementMetrics
    temperature: Temperature
    tasks_generated: List[Task] = field(default_factory=list)
    previous_stage: Optional[DealStage] = None
    previous_score: int = 0
    previous_temperature: Optional[Temperature] = None
    insights: List[str] = field(default_factory=list)
    task_error: Optional[str] = None

    @property
    def stage_changed(self) -> bool:
        return self.previous_stage is not None and self.previous_stage != self.deal.stage

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deal': self.deal.to_json_dict(),
            'metrics': self.metrics.to_dict(),
            'temperature': self.temperature.value,
            'previous_stage': self.previous_stage.value if self.previous_stage else None,
            'stage_changed': self.stage_changed,
            'tasks_generated': [
                {**t.to_dict(), 'automation_trigger': t.automation_trigger}
                for t in self.tasks_generated
            ],
            'insights': list(self.insights),
            'task_error': self.task_error,
        }


class DealService:
    """
    Deal aggregate service.

    Concurrent recomputes for the same deal are serialized with a per-deal
    lock so stage never regresses and the task cooldown never double-fires.
    Only guards callers sharing this service instance.
    """

    def __init__(
        self,
        store: DealStore,
        scoring_engine: Optional[ScoringEngine] = None,
        rule_engine: Optional[RuleEngine] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.scoring = scoring_engine or ScoringEngine()
        self.rules = rule_engine or RuleEngine()
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, deal_id: str) -> threading.Lock:
        with self._locks_guard:
            if deal_id not in self._locks:
                self._locks[deal_id] = threading.Lock()
            return self._locks[deal_id]

    # ==========================================
    # DEAL LIFECYCLE
    # ==========================================

    def create_deal_from_link(
        self,
        link_id: str,
        name: str = '',
        property_ids: Optional[Sequence[str]] = None,
        agent_id: Optional[str] = None,
        client_id: Optional[str] = None,
        deal_value: Optional[float] = None,
        deal_id: Optional[str] = None,
    ) -> Deal:
        """Create the deal that tracks a newly created link."""
        property_ids = list(property_ids or [])
        now = self.clock()
        deal = Deal(
            id=deal_id or f"deal_{uuid.uuid4().hex[:12]}",
            name=name or f"Property Collection - {len(property_ids)} properties",
            link_id=link_id,
            agent_id=agent_id,
            client_id=client_id,
            stage=DealStage.CREATED,
            status=DealStatus.ACTIVE,
            engagement_score=0,
            temperature=Temperature.COLD,
            deal_value=deal_value,
            property_ids=property_ids,
            created_at=now,
            updated_at=now,
        )
        self.store.create_deal(deal)
        logger.info(f"Created deal {deal.id} from link {link_id}")
        return deal

    def get_deal(self, deal_id: str) -> Deal:
        deal = self.store.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    def get_deals(
        self,
        filters: Optional[DealFilters] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Paginated deal listing: {'data': [Deal], 'pagination': {...}}."""
        return self.store.get_deals(filters, page, limit)

    # ==========================================
    # RECOMPUTE
    # ==========================================

    def plan_recompute(
        self,
        deal: Deal,
        session: SessionData,
        existing_tasks: Optional[Sequence[Task]] = (),
        now: Optional[datetime] = None
    ) -> RecomputeResult:
        """
        Compute the full diff for one session without touching the store.

        Pass existing_tasks=None when prior tasks could not be read; no task
        is generated in that case.
        """
        now = now or self.clock()

        activity_times = [t for t in (session.activity_time, deal.last_activity_at) if t]
        last_activity = max(activity_times) if activity_times else None

        metrics = self.scoring.score(session, last_activity_at=last_activity, now=now)
        temperature = classify(metrics.total_score)

        # Telemetry only arrives through a distributed link
        context = StageContext(
            link_shared=True,
            has_view=session.properties_viewed > 0 or session.detail_views > 0,
            score=metrics.total_score,
            temperature=temperature,
        )
        stage = next_stage(deal.stage, context)

        updated = replace(
            deal,
            stage=stage,
            engagement_score=metrics.total_score,
            temperature=temperature,
            session_count=deal.session_count + 1,
            total_time_spent=deal.total_time_spent + max(0, session.duration),
            # A session without timestamps leaves the stored activity time untouched
            last_activity_at=last_activity,
            updated_at=now,
        )

        tasks: List[Task] = []
        if existing_tasks is None:
            logger.warning(f"Deal {deal.id}: prior tasks unavailable, skipping automation")
        elif updated.status in CLOSED_STATUSES:
            logger.debug(f"Deal {deal.id} is {updated.status.value}, skipping automation")
        else:
            try:
                tasks = self.rules.evaluate(updated, metrics, temperature, existing_tasks, now)
            except Exception as e:
                logger.error(f"Rule evaluation failed for deal {deal.id}: {e}", exc_info=True)

        return RecomputeResult(
            deal=updated,
            metrics=metrics,
            temperature=temperature,
            tasks_generated=tasks,
            previous_stage=deal.stage,
            previous_score=deal.engagement_score,
            previous_temperature=deal.temperature,
            insights=self.scoring.insights(metrics),
        )

    def recompute(self, deal_id: str, session: SessionData, persist: bool = True) -> RecomputeResult:
        """
        Score a session against a stored deal and write back the result.

        The deal update is the primary effect and its failures propagate.
        Engagement history and task inserts are best-effort: failures are
        logged and reported on the result, never raised.

        Raises:
            DealNotFoundError: deal_id does not resolve
        """
        with self._lock_for(deal_id):
            deal = self.get_deal(deal_id)

            try:
                existing_tasks = self.store.get_tasks_for_deal(deal_id, automated_only=True)
            except Exception as e:
                logger.error(f"Could not read tasks for deal {deal_id}: {e}", exc_info=True)
                existing_tasks = None

            result = self.plan_recompute(deal, session, existing_tasks)
            if not persist:
                return result

            self.store.update_deal(result.deal)
            if result.stage_changed:
                logger.info(
                    f"Deal {deal_id} stage {result.previous_stage.value} → {result.deal.stage.value}"
                )

            self._record_history(result, session)

            if result.tasks_generated:
                try:
                    self.store.insert_tasks(result.tasks_generated)
                except Exception as e:
                    error = AutomationSideEffectError(deal_id, e)
                    logger.error(str(error), exc_info=True)
                    result.task_error = str(error)
                    result.tasks_generated = []

            return result

    def _record_history(self, result: RecomputeResult, session: SessionData) -> None:
        record = {
            'session_id': session.session_id,
            'deal_id': result.deal.id,
            'client_id': result.deal.client_id,
            'started_at': session.start_time.isoformat() if session.start_time else None,
            'ended_at': session.end_time.isoformat() if session.end_time else None,
            'duration_seconds': max(0, session.duration),
            'properties_viewed': session.properties_viewed,
            'properties_liked': session.properties_liked,
            'properties_considered': session.properties_considered,
            'completion_rate': result.metrics.breakdown.get(
                'session_completion', {}).get('completion_ratio', 0.0),
            'engagement_score': result.metrics.total_score,
            'temperature': result.temperature.value,
            'score_change': result.metrics.total_score - result.previous_score,
            'temperature_change': temperature_change(
                result.previous_temperature or Temperature.COLD, result.temperature),
            'metrics': result.metrics.to_dict(),
            'recorded_at': result.deal.updated_at.isoformat(),
        }
        try:
            self.store.insert_engagement_session(record)
        except Exception as e:
            logger.warning(f"Failed to record engagement history for deal {result.deal.id}: {e}")

    # ==========================================
    # MANUAL ACTIONS
    # ==========================================

    def _save(self, deal: Deal, **changes) -> Deal:
        updated = replace(deal, updated_at=self.clock(), **changes)
        self.store.update_deal(updated)
        return updated

    def mark_shared(self, deal_id: str) -> Deal:
        """Record that the link was sent to the client (created -> shared)."""
        with self._lock_for(deal_id):
            deal = self.get_deal(deal_id)
            if deal.stage != DealStage.CREATED:
                return deal
            return self._save(deal, stage=DealStage.SHARED)

    def advance_deal(self, deal_id: str) -> Deal:
        """Agent-confirmed progression from qualified to advanced."""
        with self._lock_for(deal_id):
            deal = self.get_deal(deal_id)
            stage = next_manual_stage(deal.stage, StageTrigger.MANUAL_ADVANCE)
            logger.info(f"Deal {deal_id} manually advanced to {stage.value}")
            return self._save(deal, stage=stage)

    def update_deal_status(self, deal_id: str, status: DealStatus) -> Deal:
        """Change deal status; closing (won/lost) also moves the stage to closed."""
        with self._lock_for(deal_id):
            deal = self.get_deal(deal_id)
            if deal.status == status:
                return deal
            stage, status = resolve_status_change(deal.stage, deal.status, status)
            logger.info(f"Deal {deal_id} status {deal.status.value} → {status.value}")
            return self._save(deal, stage=stage, status=status)

    def set_stage(self, deal_id: str, stage: DealStage) -> Deal:
        """Explicit agent override; the only path that may move a stage backward."""
        with self._lock_for(deal_id):
            deal = self.get_deal(deal_id)
            if stage == DealStage.CLOSED and deal.status not in CLOSED_STATUSES:
                raise InvalidTransitionError(
                    "Close a deal through update_deal_status (closed-won or closed-lost)"
                )
            if stage.rank < deal.stage.rank:
                logger.warning(f"Deal {deal_id} stage regressed {deal.stage.value} → {stage.value}")
            return self._save(deal, stage=stage)

    def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        return self.store.update_task_status(task_id, status)

    # ==========================================
    # ENGAGEMENT HISTORY
    # ==========================================

    def engagement_history(self, deal_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Recorded sessions, newest first. Defaults to the engagement_history_limit setting."""
        self.get_deal(deal_id)
        if limit is None:
            limit = int(get_db_setting(self.store, 'engagement_history_limit', DEFAULT_HISTORY_LIMIT))
        return self.store.get_engagement_history(deal_id, limit)

    def engagement_trend(self, deal_id: str, window: int = TREND_WINDOW) -> Dict[str, Any]:
        """
        Classify recent score movement as improving, declining or stable.

        Uses the mean change across the last `window` recorded scores.
        """
        history = self.engagement_history(deal_id, limit=window)
        scores = [h['engagement_score'] for h in reversed(history)]

        if len(scores) < 2:
            mean_delta = 0.0
        else:
            deltas = [b - a for a, b in zip(scores, scores[1:])]
            mean_delta = sum(deltas) / len(deltas)

        if mean_delta > TREND_THRESHOLD:
            trend = 'improving'
        elif mean_delta < -TREND_THRESHOLD:
            trend = 'declining'
        else:
            trend = 'stable'

        return {
            'deal_id': deal_id,
            'trend': trend,
            'trend_strength': max(-1.0, min(1.0, mean_delta / 100)),
            'scores': scores,
            'latest_score': scores[-1] if scores else None,
        }
