"""
Error types

Only used inside the core to route a failed capability call to its
deterministic fallback. Nothing here is allowed to reach the scheduler.
"""


class MazeMindError(Exception):
    """Base class for cognitive core errors"""


class CapabilityUnavailableError(MazeMindError):
    """The language model or embedding capability is not configured"""


class MalformedResponseError(MazeMindError):
    """The language model answered, but not in the expected structure"""
