"""
SwipeLink Adapters Package

Canonical data classes and the abstract store interface that the
scoring core and deal service are written against.
"""

from src.adapters.base_adapter import (
    DealStore,
    SessionData,
    EngagementMetrics,
    Deal,
    Task,
    DealFilters,
    Temperature,
    DealStage,
    DealStatus,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "DealStore",
    "SessionData",
    "EngagementMetrics",
    "Deal",
    "Task",
    "DealFilters",
    "Temperature",
    "DealStage",
    "DealStatus",
    "TaskPriority",
    "TaskStatus",
]
