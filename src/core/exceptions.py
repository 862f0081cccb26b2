# =========================================================================
# CUSTOM EXCEPTIONS
# =========================================================================

class SwipeLinkError(Exception):
    """Base exception for SwipeLink CRM errors"""
    pass

class InputError(SwipeLinkError):
    """Caller-supplied data failed validation"""
    pass

class DealNotFoundError(SwipeLinkError):
    """Deal id does not resolve in the store"""

    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")

class InvalidTransitionError(SwipeLinkError):
    """Manual stage/status change not allowed from the current value"""
    pass

class AutomationSideEffectError(SwipeLinkError):
    """Task persistence failed after the score update succeeded"""

    def __init__(self, deal_id: str, cause: Exception):
        self.deal_id = deal_id
        self.cause = cause
        super().__init__(f"Failed to persist automated tasks for deal {deal_id}: {cause}")
