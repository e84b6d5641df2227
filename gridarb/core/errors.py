"""Exception hierarchy for the stop-loss arb engine."""


class GridArbError(Exception):
    """Base class for all gridarb errors."""


class ConfigurationError(GridArbError, ValueError):
    """Raised at startup when settings or strategy parameters are unusable."""


class StateNotFoundError(ConfigurationError):
    """Raised when a stock's persisted state file does not exist."""


class PreconditionViolation(GridArbError, RuntimeError):
    """Raised when a computation is attempted on a state that does not allow it."""


class BrokerageError(GridArbError):
    """Raised when the brokerage fails to return a quote or accept an order."""


class OrderNotFilledError(BrokerageError):
    """Raised when an order is not confirmed filled within the allowed window."""


class FillQuantityMismatchError(BrokerageError):
    """Raised when the filled quantity differs from the requested quantity."""


class SnapshotsExhaustedError(GridArbError):
    """Raised when a historical replay source has no snapshots left."""
