"""
Execution context shared by every contract model.

The Chain object is the explicit store that replaces ambient global state: it
owns the block clock that interest accrual and the recovery grace period read.
Time only moves when a simulation or test advances it.

Contracts derive from Contract, which gives them an address (used as the key
in token balance maps) and the per-contract reentrancy flag read by
``non_reentrant``.
"""

import functools

from errors import StateError, REENTRANCY


class Chain:
    """Serialized execution substrate with a monotonically increasing clock."""

    def __init__(self, timestamp=0):
        self.timestamp = timestamp

    def now(self):
        return self.timestamp

    def warp(self, timestamp):
        """Move the clock to an absolute timestamp. The clock never goes back."""
        if timestamp < self.timestamp:
            raise ValueError(f"Cannot move clock backwards from {self.timestamp} to {timestamp}")
        self.timestamp = timestamp

    def skip(self, seconds):
        self.warp(self.timestamp + seconds)


class Contract:
    """Base for models that hold funds under their own address."""

    def __init__(self, chain, address):
        self.chain = chain
        self.address = address
        self._entered = False

    def __repr__(self):
        return f"{type(self).__name__}({self.address!r})"


def non_reentrant(method):
    """
    Hold the contract's lock for the duration of the call.

    A token receive hook that calls back into any guarded entry point of the
    same contract before the outer call returns is rejected.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._entered:
            raise StateError(REENTRANCY, f"Reentrant call to {type(self).__name__}.{method.__name__}")
        self._entered = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._entered = False

    return wrapper
