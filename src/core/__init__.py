"""
SwipeLink Core Package

Business logic for the CRM engine:
- Engagement scoring
- Temperature classification
- Deal stage progression
- Deal orchestration (see src.core.deal_service)
- Database operations
"""

from src.core.database import CRMDatabase
from src.core.scoring_engine import ScoringEngine, ScoringWeights

__all__ = [
    "CRMDatabase",
    "ScoringEngine",
    "ScoringWeights",
]
