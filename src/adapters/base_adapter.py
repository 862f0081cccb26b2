"""
SwipeLink Base Adapter Interfaces

Canonical data classes shared by the scoring core, the automation rules and
the storage layer, plus the abstract store interface the deal service talks to.
The adapter pattern allows swapping the backing store without changing core logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any
import json


# ============================================
# ENUMERATIONS
# ============================================

class Temperature(str, Enum):
    """Coarse three-tier classification of an engagement score."""
    HOT = 'hot'
    WARM = 'warm'
    COLD = 'cold'


class DealStage(str, Enum):
    """Deal lifecycle stages, declared in lifecycle order."""
    CREATED = 'created'
    SHARED = 'shared'
    ACCESSED = 'accessed'
    ENGAGED = 'engaged'
    QUALIFIED = 'qualified'
    ADVANCED = 'advanced'
    CLOSED = 'closed'

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = list(DealStage)


class DealStatus(str, Enum):
    """Business state of a deal (independent of stage)."""
    ACTIVE = 'active'
    QUALIFIED = 'qualified'
    NURTURING = 'nurturing'
    CLOSED_WON = 'closed-won'
    CLOSED_LOST = 'closed-lost'


class TaskPriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'


class TaskStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    DISMISSED = 'dismissed'
    OVERDUE = 'overdue'
    BLOCKED = 'blocked'


TERMINAL_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.DISMISSED)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    """
    Parse an ISO timestamp, returning None for anything unparsable.

    Aware timestamps are converted to naive local time so they compare
    with datetime.now().
    """
    if value is None or value == '':
        return None
    if not isinstance(value, datetime):
        try:
            value = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def _to_count(value: Any) -> int:
    """Coerce a telemetry counter to a non-negative int."""
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, number)


# ============================================
# DATA CLASSES (Canonical Representations)
# ============================================

@dataclass
class SessionData:
    """One browsing session's raw counters, as reported by the client view."""
    session_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: int = 0  # seconds
    total_properties: int = 0
    properties_viewed: int = 0
    properties_liked: int = 0
    properties_considered: int = 0
    properties_passed: int = 0
    detail_views: int = 0
    images_browsed: int = 0
    map_views: int = 0
    return_visit: bool = False
    liked_property_types: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionData':
        """
        Build a session from an untrusted telemetry payload.

        Accepts snake_case or camelCase keys. Missing or malformed values
        fall back to zero/absent instead of raising.
        """
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        liked_types = pick('liked_property_types', 'likedPropertyTypes', default=[])
        if not isinstance(liked_types, list):
            liked_types = []

        return cls(
            session_id=str(pick('session_id', 'sessionId', default='')),
            start_time=_parse_dt(pick('start_time', 'startTime')),
            end_time=_parse_dt(pick('end_time', 'endTime')),
            duration=_to_count(pick('duration', default=0)),
            total_properties=_to_count(pick('total_properties', 'totalProperties', default=0)),
            properties_viewed=_to_count(pick('properties_viewed', 'propertiesViewed', default=0)),
            properties_liked=_to_count(pick('properties_liked', 'propertiesLiked', default=0)),
            properties_considered=_to_count(
                pick('properties_considered', 'propertiesConsidered', default=0)),
            properties_passed=_to_count(pick('properties_passed', 'propertiesPassed', default=0)),
            detail_views=_to_count(pick('detail_views', 'detailViews', 'detailViewsOpened', default=0)),
            images_browsed=_to_count(pick('images_browsed', 'imagesBrowsed', default=0)),
            map_views=_to_count(pick('map_views', 'mapViews', default=0)),
            return_visit=bool(pick('return_visit', 'returnVisit', 'isReturnVisit', default=False)),
            liked_property_types=[str(t) for t in liked_types if t],
        )

    @property
    def activity_time(self) -> Optional[datetime]:
        """When the session's activity last happened."""
        return self.end_time or self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'duration': self.duration,
            'total_properties': self.total_properties,
            'properties_viewed': self.properties_viewed,
            'properties_liked': self.properties_liked,
            'properties_considered': self.properties_considered,
            'properties_passed': self.properties_passed,
            'detail_views': self.detail_views,
            'images_browsed': self.images_browsed,
            'map_views': self.map_views,
            'return_visit': self.return_visit,
            'liked_property_types': list(self.liked_property_types),
        }


@dataclass(frozen=True)
class EngagementMetrics:
    """Sub-scores for one evaluation. Immutable once produced."""
    session_completion: int = 0
    property_interaction: int = 0
    behavioral_indicators: int = 0
    recency_factor: int = 0
    total_score: int = 0
    breakdown: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_completion': self.session_completion,
            'property_interaction': self.property_interaction,
            'behavioral_indicators': self.behavioral_indicators,
            'recency_factor': self.recency_factor,
            'total_score': self.total_score,
            'breakdown': dict(self.breakdown),
        }


@dataclass
class Deal:
    """A shared property collection tracked as a sales deal."""
    id: str
    name: str = ''
    link_id: Optional[str] = None
    agent_id: Optional[str] = None
    client_id: Optional[str] = None
    stage: DealStage = DealStage.CREATED
    status: DealStatus = DealStatus.ACTIVE
    engagement_score: int = 0
    temperature: Temperature = Temperature.COLD
    deal_value: Optional[float] = None
    property_ids: List[str] = field(default_factory=list)
    session_count: int = 0
    total_time_spent: int = 0  # seconds
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    last_activity_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def property_count(self) -> int:
        return len(self.property_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage"""
        return {
            'id': self.id,
            'name': self.name,
            'link_id': self.link_id,
            'agent_id': self.agent_id,
            'client_id': self.client_id,
            'stage': self.stage.value,
            'status': self.status.value,
            'engagement_score': self.engagement_score,
            'temperature': self.temperature.value,
            'deal_value': self.deal_value,
            'property_ids': json.dumps(self.property_ids),
            'session_count': self.session_count,
            'total_time_spent': self.total_time_spent,
            'notes': self.notes,
            'tags': json.dumps(self.tags),
            'last_activity_at': _iso(self.last_activity_at),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    def to_json_dict(self) -> Dict[str, Any]:
        """Like to_dict, with list fields left as lists for JSON output"""
        data = self.to_dict()
        data['property_ids'] = list(self.property_ids)
        data['tags'] = list(self.tags)
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Deal':
        """Build from a database row dictionary."""
        return cls(
            id=row['id'],
            name=row.get('name') or '',
            link_id=row.get('link_id'),
            agent_id=row.get('agent_id'),
            client_id=row.get('client_id'),
            stage=DealStage(row.get('stage') or DealStage.CREATED.value),
            status=DealStatus(row.get('status') or DealStatus.ACTIVE.value),
            engagement_score=int(row.get('engagement_score') or 0),
            temperature=Temperature(row.get('temperature') or Temperature.COLD.value),
            deal_value=row.get('deal_value'),
            property_ids=json.loads(row.get('property_ids') or '[]'),
            session_count=int(row.get('session_count') or 0),
            total_time_spent=int(row.get('total_time_spent') or 0),
            notes=row.get('notes'),
            tags=json.loads(row.get('tags') or '[]'),
            last_activity_at=_parse_dt(row.get('last_activity_at')),
            created_at=_parse_dt(row.get('created_at')) or datetime.now(),
            updated_at=_parse_dt(row.get('updated_at')) or datetime.now(),
        )


@dataclass
class Task:
    """Follow-up task for an agent, created by a rule firing or by hand."""
    id: str
    deal_id: str
    type: str
    priority: TaskPriority
    title: str
    description: str = ''
    due_date: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING
    client_id: Optional[str] = None
    is_automated: bool = False
    automation_trigger: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def trigger_kind(self) -> Optional[str]:
        return self.automation_trigger.get('trigger')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'client_id': self.client_id,
            'type': self.type,
            'priority': self.priority.value,
            'title': self.title,
            'description': self.description,
            'due_date': _iso(self.due_date),
            'status': self.status.value,
            'is_automated': self.is_automated,
            'automation_trigger': json.dumps(self.automation_trigger),
            'created_at': self.created_at.isoformat(),
            'completed_at': _iso(self.completed_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Task':
        return cls(
            id=row['id'],
            deal_id=row['deal_id'],
            client_id=row.get('client_id'),
            type=row['type'],
            priority=TaskPriority(row['priority']),
            title=row['title'],
            description=row.get('description') or '',
            due_date=_parse_dt(row.get('due_date')),
            status=TaskStatus(row.get('status') or TaskStatus.PENDING.value),
            is_automated=bool(row.get('is_automated')),
            automation_trigger=json.loads(row.get('automation_trigger') or '{}'),
            created_at=_parse_dt(row.get('created_at')) or datetime.now(),
            completed_at=_parse_dt(row.get('completed_at')),
        )


@dataclass
class DealFilters:
    """Dashboard listing filters. Empty values mean 'no constraint'."""
    status: List[DealStatus] = field(default_factory=list)
    stage: List[DealStage] = field(default_factory=list)
    temperature: List[Temperature] = field(default_factory=list)
    search: Optional[str] = None
    agent_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


# ============================================
# ABSTRACT STORE INTERFACE
# ============================================

class DealStore(ABC):
    """
    Abstract interface for deal/task persistence.

    The deal service only ever talks to this interface; the SQLite
    implementation lives in src.core.database.
    """

    @abstractmethod
    def create_deal(self, deal: Deal) -> bool:
        """Insert a new deal."""
        pass

    @abstractmethod
    def get_deal(self, deal_id: str) -> Optional[Deal]:
        """Return the deal or None if it does not exist."""
        pass

    @abstractmethod
    def update_deal(self, deal: Deal) -> bool:
        """Write back every mutable deal field."""
        pass

    @abstractmethod
    def get_deals(
        self,
        filters: Optional[DealFilters] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Return {'data': [Deal], 'pagination': {...}}."""
        pass

    @abstractmethod
    def insert_tasks(self, tasks: List[Task]) -> int:
        """Insert tasks, returning how many were written."""
        pass

    @abstractmethod
    def get_tasks_for_deal(self, deal_id: str, automated_only: bool = False) -> List[Task]:
        pass

    @abstractmethod
    def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        pass

    @abstractmethod
    def insert_engagement_session(self, record: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    def get_engagement_history(self, deal_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Engagement session records, newest first."""
        pass

    @abstractmethod
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Typed system setting value, or default when the key is unknown."""
        pass
