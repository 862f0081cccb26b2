"""
SwipeLink Engagement Scoring Engine

Turns browsing-session telemetry into a bounded 0-100 engagement score.

Four additive components, each capped independently:
- Session completion   (0-25)
- Property interaction (0-35)
- Behavioral indicators (0-25)
- Recency factor       (0-15)
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any, Optional, Sequence, Tuple
import logging

from src.adapters.base_adapter import SessionData, EngagementMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionBand:
    """Points awarded when properties_viewed falls in [min_viewed, max_viewed]."""
    name: str
    min_viewed: int
    max_viewed: Optional[int]
    points: int

    def contains(self, viewed: int) -> bool:
        if viewed < self.min_viewed:
            return False
        return self.max_viewed is None or viewed <= self.max_viewed


DEFAULT_COMPLETION_BANDS = (
    CompletionBand('partial', 5, 15, 10),
    CompletionBand('full', 16, 25, 20),
    CompletionBand('extended', 26, None, 25),  # full + extra engagement bonus
)

# (max hours since activity, points), checked in order
DEFAULT_RECENCY_STEPS = (
    (24, 15),
    (24 * 7, 10),
    (24 * 30, 5),
)


@dataclass(frozen=True)
class ScoringWeights:
    """Point values, thresholds and caps for the engagement score."""
    # Component caps
    session_completion_max: int = 25
    property_interaction_max: int = 35
    behavioral_indicators_max: int = 25
    recency_factor_max: int = 15
    total_max: int = 100

    completion_bands: Tuple[CompletionBand, ...] = DEFAULT_COMPLETION_BANDS

    # Interaction points per event
    liked_property: int = 3
    considered_property: int = 2
    detail_view: int = 2
    image_browse: int = 1
    map_view: int = 1

    # Behavioral bonuses
    return_visit_points: int = 10
    long_session_seconds: int = 300
    long_session_points: int = 5
    high_like_ratio: float = 0.20
    high_like_ratio_points: int = 5
    consistent_preference_share: float = 0.6
    consistent_preference_points: int = 5

    recency_steps: Tuple[Tuple[int, int], ...] = DEFAULT_RECENCY_STEPS

    # Multi-session weighting
    session_weight_recency: float = 0.7
    session_weight_quality: float = 0.3
    session_quality_seconds: int = 600


class SessionAggregator:
    """
    Reduces one session's raw counters to EngagementMetrics.

    Never raises on bad telemetry: negative counts and durations are
    treated as zero, and properties_viewed is clamped to total_properties
    when the collection size is known.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def aggregate(
        self,
        session: SessionData,
        last_activity_at: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        """
        Score a single session.

        Args:
            session: Session telemetry
            last_activity_at: Most recent known activity for the deal;
                defaults to the session's own end/start time
            now: Evaluation time (default: datetime.now())

        Returns:
            EngagementMetrics with total_score in [0, 100]
        """
        now = now or datetime.now()
        counts = self._sanitize(session)
        breakdown: Dict[str, Any] = {}

        completion = self._score_session_completion(counts, breakdown)
        interaction = self._score_property_interaction(counts, breakdown)
        behavioral = self._score_behavioral_indicators(session, counts, breakdown)

        reference = last_activity_at or session.activity_time
        recency = self._score_recency(reference, now, breakdown)

        total = completion + interaction + behavioral + recency
        total = min(self.weights.total_max, max(0, total))

        return EngagementMetrics(
            session_completion=completion,
            property_interaction=interaction,
            behavioral_indicators=behavioral,
            recency_factor=recency,
            total_score=total,
            breakdown=breakdown,
        )

    def _sanitize(self, session: SessionData) -> Dict[str, int]:
        def count(value) -> int:
            try:
                return max(0, int(value or 0))
            except (TypeError, ValueError):
                return 0

        total = count(session.total_properties)
        viewed = count(session.properties_viewed)
        if total > 0 and viewed > total:
            logger.debug(
                f"Session {session.session_id}: viewed {viewed} > total {total}, clamping"
            )
            viewed = total

        return {
            'total': total,
            'viewed': viewed,
            'liked': count(session.properties_liked),
            'considered': count(session.properties_considered),
            'passed': count(session.properties_passed),
            'detail_views': count(session.detail_views),
            'images': count(session.images_browsed),
            'maps': count(session.map_views),
            'duration': count(session.duration),
        }

    def _score_session_completion(self, counts: Dict[str, int], breakdown: Dict[str, Any]) -> int:
        """Banded points for how much of the collection was viewed (0-25)."""
        viewed = counts['viewed']
        ratio = viewed / max(counts['total'], 1) if viewed else 0.0

        band_name = None
        points = 0
        for band in self.weights.completion_bands:
            if band.contains(viewed):
                band_name = band.name
                points = band.points
                break

        points = min(self.weights.session_completion_max, points)
        breakdown['session_completion'] = {
            'properties_viewed': viewed,
            'completion_ratio': round(ratio, 3),
            'band': band_name,
            'points': points,
        }
        return points

    def _score_property_interaction(self, counts: Dict[str, int], breakdown: Dict[str, Any]) -> int:
        """Weighted interaction events (0-35)."""
        w = self.weights
        terms = {
            'liked': counts['liked'] * w.liked_property,
            'considered': counts['considered'] * w.considered_property,
            'detail_views': counts['detail_views'] * w.detail_view,
            'images_browsed': counts['images'] * w.image_browse,
            'map_views': counts['maps'] * w.map_view,
        }
        points = min(w.property_interaction_max, sum(terms.values()))
        breakdown['property_interaction'] = {**terms, 'points': points}
        return points

    def _score_behavioral_indicators(
        self,
        session: SessionData,
        counts: Dict[str, int],
        breakdown: Dict[str, Any]
    ) -> int:
        """Flat bonuses for strong intent signals (0-25)."""
        w = self.weights
        bonuses = {}

        if session.return_visit:
            bonuses['return_visit'] = w.return_visit_points

        if counts['duration'] > w.long_session_seconds:
            bonuses['long_session'] = w.long_session_points

        if counts['viewed'] > 0:
            like_ratio = counts['liked'] / counts['viewed']
            if like_ratio > w.high_like_ratio:
                bonuses['high_like_ratio'] = w.high_like_ratio_points

        if self._has_consistent_preferences(session, counts):
            bonuses['consistent_preferences'] = w.consistent_preference_points

        points = min(w.behavioral_indicators_max, sum(bonuses.values()))
        breakdown['behavioral_indicators'] = {'bonuses': bonuses, 'points': points}
        return points

    def _has_consistent_preferences(self, session: SessionData, counts: Dict[str, int]) -> bool:
        """
        Likes concentrate on one property type.

        Without per-like property types, falls back to liking more than passing.
        """
        types = [t.lower() for t in session.liked_property_types if t]
        if types:
            if len(types) < 2:
                return False
            _, top = Counter(types).most_common(1)[0]
            return top / len(types) >= self.weights.consistent_preference_share

        return counts['liked'] > counts['passed']

    def _score_recency(
        self,
        reference: Optional[datetime],
        now: datetime,
        breakdown: Dict[str, Any]
    ) -> int:
        """Time-decay points for the last activity (0-15)."""
        if reference is None:
            breakdown['recency_factor'] = {'hours_since_activity': None, 'points': 0}
            return 0

        hours = max(0.0, (now - reference).total_seconds() / 3600)
        points = 0
        for max_hours, step_points in self.weights.recency_steps:
            if hours <= max_hours:
                points = step_points
                break

        points = min(self.weights.recency_factor_max, points)
        breakdown['recency_factor'] = {
            'hours_since_activity': round(hours, 2),
            'points': points,
        }
        return points


class ScoringEngine:
    """
    Public scoring surface used by the deal service and the CLI.

    Delegates the arithmetic to SessionAggregator and adds the
    agent-facing projections (insights, recommendations).
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()
        self.aggregator = SessionAggregator(self.weights)

    def score(
        self,
        session: SessionData,
        last_activity_at: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        return self.aggregator.aggregate(session, last_activity_at=last_activity_at, now=now)

    def aggregate_sessions(
        self,
        sessions: Sequence[SessionData],
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        """
        Score a deal across several sessions.

        Each session's total is weighted by recency (70%) and quality
        (30%, session length up to 10 minutes). Component scores come from
        the most recent session; the total is the rounded weighted mean.
        """
        if not sessions:
            return EngagementMetrics()

        now = now or datetime.now()
        scored = [(s, self.score(s, now=now)) for s in sessions]

        total_weight = 0.0
        weighted = 0.0
        for session, metrics in scored:
            weight = self._session_weight(session, metrics, len(sessions))
            weighted += metrics.total_score * weight
            total_weight += weight

        aggregate_score = round(weighted / total_weight) if total_weight > 0 else 0

        latest_session, latest_metrics = max(
            scored,
            key=lambda pair: pair[0].activity_time or datetime.min
        )
        breakdown = dict(latest_metrics.breakdown)
        breakdown['sessions'] = {
            'count': len(sessions),
            'latest_session_id': latest_session.session_id,
        }

        return EngagementMetrics(
            session_completion=latest_metrics.session_completion,
            property_interaction=latest_metrics.property_interaction,
            behavioral_indicators=latest_metrics.behavioral_indicators,
            recency_factor=latest_metrics.recency_factor,
            total_score=min(self.weights.total_max, aggregate_score),
            breakdown=breakdown,
        )

    def _session_weight(self, session: SessionData, metrics: EngagementMetrics, count: int) -> float:
        if count == 1:
            return 1.0
        w = self.weights
        recency = metrics.recency_factor / w.recency_factor_max
        quality = min(1.0, max(0, session.duration) / w.session_quality_seconds)
        return recency * w.session_weight_recency + quality * w.session_weight_quality

    def insights(self, metrics: EngagementMetrics) -> List[str]:
        """Human-readable observations about what drove the score."""
        insights = []

        if metrics.session_completion >= 20:
            insights.append('Client thoroughly reviewed property collection')
        elif metrics.session_completion >= 10:
            insights.append('Client showed moderate interest in properties')
        else:
            insights.append('Client browsed briefly through collection')

        if metrics.property_interaction >= 25:
            insights.append('High engagement with individual properties')
        elif metrics.property_interaction >= 15:
            insights.append('Solid interest in specific properties')

        bonuses = metrics.breakdown.get('behavioral_indicators', {}).get('bonuses', {})
        if 'return_visit' in bonuses:
            insights.append('Returning visitor')
        if 'high_like_ratio' in bonuses:
            insights.append('High like ratio')
        if 'long_session' in bonuses:
            insights.append('Spent extended time browsing')
        if 'consistent_preferences' in bonuses:
            insights.append('Consistent property preferences')

        if metrics.recency_factor >= 10:
            insights.append('Recent activity indicates active property search')
        elif metrics.recency_factor >= 5:
            insights.append('Some recent activity, interest may still be active')
        else:
            insights.append('Activity was some time ago')

        return insights

    def recommendations(self, metrics: EngagementMetrics) -> List[str]:
        """Suggested agent actions that pair with insights()."""
        recs = []

        if metrics.session_completion >= 20:
            recs.append('Follow up with detailed property information')
        elif metrics.session_completion >= 10:
            recs.append('Send curated selection of similar properties')
        else:
            recs.append('Re-engage with more targeted property options')

        if metrics.property_interaction >= 25:
            recs.append('Schedule property viewings immediately')
        elif metrics.property_interaction >= 15:
            recs.append('Provide additional property details and arrange viewings')

        if metrics.behavioral_indicators >= 20:
            recs.append('Prioritize immediate personal contact')
        elif metrics.behavioral_indicators >= 10:
            recs.append('Schedule follow-up call within 24 hours')

        if metrics.recency_factor >= 10:
            recs.append('Contact while the search is active')
        elif metrics.recency_factor >= 5:
            recs.append('Follow up with gentle re-engagement')
        else:
            recs.append('Consider nurture campaign to rekindle interest')

        return recs
