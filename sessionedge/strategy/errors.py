"""Engine error types.

Configuration and precondition failures only.  Expected non-events (no
breakout, gate failure, low confidence) are never raised.
"""


class ZoneConfigurationError(ValueError):
    """Zone boundaries cannot be computed in strictly increasing order."""


class ProfileConfigurationError(ValueError):
    """Volume profile bucket grid is empty or has a non-positive width."""


class SessionInitializationError(ValueError):
    """A session was initialised without the data it requires."""


class EngineNotInitializedError(RuntimeError):
    """``evaluate`` was called before ``initialize``."""
