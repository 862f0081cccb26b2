"""
SwipeLink Automation Module

Follow-up task automation for the CRM engine:
- Score-band automation rules (hot / warm / cold leads)
- Rules engine with per-deal cooldown and duplicate suppression
- Command-line runner (score, recompute, deals)
"""

__version__ = "0.1.0"
