"""
Error taxonomy for the floor-price lending model.

Every rejected operation raises a ProtocolError carrying a stable ``code`` so
that callers (recovery bots in particular) can tell a condition that will
clear with time from one that never will. All errors subclass ValueError.
"""


class ProtocolError(ValueError):
    """Base class for every rejected protocol operation."""

    code = "PROTOCOL_ERROR"

    def __init__(self, code=None, message=None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)

    @property
    def retryable(self):
        return self.code == GRACE_PERIOD_ACTIVE


class AuthorizationError(ProtocolError):
    """Caller lacks the role or allowance the operation requires."""

    code = "UNAUTHORIZED"


class EconomicLimitError(ProtocolError):
    """Request exceeds a limit derived from balances, reserves or pMin."""


class StateError(ProtocolError):
    """Operation is not valid in the current state of the account or contract."""


class InvalidAmountError(ProtocolError):
    code = "INVALID_AMOUNT"


# Authorization
UNAUTHORIZED = "UNAUTHORIZED"
INSUFFICIENT_ALLOWANCE = "INSUFFICIENT_ALLOWANCE"
LP_TRANSFER_RESTRICTED = "LP_TRANSFER_RESTRICTED"

# Economic limits
EXCEEDS_PMIN = "EXCEEDS_PMIN"
OUTSTANDING_DEBT = "OUTSTANDING_DEBT"
INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
INSUFFICIENT_INPUT_AMOUNT = "INSUFFICIENT_INPUT_AMOUNT"
INSUFFICIENT_OUTPUT_AMOUNT = "INSUFFICIENT_OUTPUT_AMOUNT"
INSUFFICIENT_LIQUIDITY_MINTED = "INSUFFICIENT_LIQUIDITY_MINTED"
INSUFFICIENT_LIQUIDITY_BURNED = "INSUFFICIENT_LIQUIDITY_BURNED"
K = "K"
INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
INSUFFICIENT_COLLATERAL = "INSUFFICIENT_COLLATERAL"
INSUFFICIENT_CASH = "INSUFFICIENT_CASH"
POOL_INSOLVENT = "POOL_INSOLVENT"

# State
POSITION_HEALTHY = "POSITION_HEALTHY"
ALREADY_MARKED = "ALREADY_MARKED"
NOT_MARKED = "NOT_MARKED"
GRACE_PERIOD_ACTIVE = "GRACE_PERIOD_ACTIVE"
NO_POSITION = "NO_POSITION"
ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
REENTRANCY = "REENTRANCY"
INVALID_TO = "INVALID_TO"
OVERFLOW = "OVERFLOW"


def require_positive(amount, what="amount"):
    if not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(message=f"{what} must be a positive integer, got {amount!r}")
