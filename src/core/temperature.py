"""
Client temperature classification.

    hot:  80-100  immediate follow-up priority
    warm: 50-79   scheduled follow-up
    cold: 0-49    nurture campaign
"""

from src.adapters.base_adapter import Temperature

HOT_MIN_SCORE = 80
WARM_MIN_SCORE = 50


def classify(score: float) -> Temperature:
    """Map an engagement score to its temperature tier."""
    if score >= HOT_MIN_SCORE:
        return Temperature.HOT
    if score >= WARM_MIN_SCORE:
        return Temperature.WARM
    return Temperature.COLD


def temperature_change(previous: Temperature, current: Temperature) -> str:
    """Describe movement between two temperatures: heated_up, cooled_down or stable."""
    order = [Temperature.COLD, Temperature.WARM, Temperature.HOT]
    delta = order.index(current) - order.index(previous)
    if delta > 0:
        return 'heated_up'
    if delta < 0:
        return 'cooled_down'
    return 'stable'
