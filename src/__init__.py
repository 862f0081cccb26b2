"""
SwipeLink CRM Engine

Engagement scoring and deal automation for shared property collections:
turns client browsing sessions into engagement scores, temperatures,
deal stage progression and follow-up tasks for the agent.
"""

__version__ = "0.1.0"
