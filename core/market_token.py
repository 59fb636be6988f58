"""
Fungible token model for the floor-price lending market.

This module simulates the two assets every market trades: the collateral
token (fixed supply minted once at launch, reducible only by burns) and the
quote token the lending pool lends out. It handles transfers, allowances,
minting by authorized minters and burning by holders.

Accounts may register a receive hook. The hook runs synchronously after a
transfer lands, the way a contract recipient's code runs inside a transfer,
which is how the tests exercise the reentrancy guards.
"""

import logging

from errors import (
    AuthorizationError,
    EconomicLimitError,
    require_positive,
    UNAUTHORIZED,
    INSUFFICIENT_ALLOWANCE,
    INSUFFICIENT_BALANCE,
)

logger = logging.getLogger(__name__)


class MarketToken:
    """
    Simulates a standard non-rebasing, non-fee-on-transfer token.
    """

    def __init__(self, name, symbol, owner=None, initial_supply=0, initial_holder=None):
        self.name = name
        self.symbol = symbol
        self.address = f"token:{symbol}"

        # Sum of all balances; only mint and burn change it
        self.total_supply = 0

        # account -> balance
        self.balances = {}

        # owner -> spender -> amount
        self.allowances = {}

        # Accounts that are allowed to mint tokens
        self.minters = set()
        self.owner = owner

        # account -> callable(token, sender, amount)
        self.receive_hooks = {}

        if initial_supply:
            self._mint(initial_holder if initial_holder is not None else owner, initial_supply)

    def __repr__(self):
        return f"MarketToken({self.symbol!r})"

    def add_minter(self, caller, minter):
        """Grant minting rights. Owner only."""
        if self.owner is None or caller != self.owner:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} is not the owner of {self.symbol}")
        self.minters.add(minter)

    def balance_of(self, account):
        return self.balances.get(account, 0)

    def allowance(self, owner, spender):
        return self.allowances.get(owner, {}).get(spender, 0)

    def approve(self, owner, spender, amount):
        """Sets the amount ``spender`` may pull from ``owner``."""
        if amount < 0:
            raise ValueError("Allowance cannot be negative")
        self.allowances.setdefault(owner, {})[spender] = amount
        return True

    def transfer(self, sender, recipient, amount):
        """
        Move ``amount`` from ``sender`` to ``recipient``.

        The recipient's receive hook, if any, runs once the balances have
        been updated.
        """
        require_positive(amount)

        sender_balance = self.balances.get(sender, 0)
        if sender_balance < amount:
            raise EconomicLimitError(
                INSUFFICIENT_BALANCE,
                f"{sender} holds {sender_balance} {self.symbol}, needs {amount}",
            )

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount

        hook = self.receive_hooks.get(recipient)
        if hook is not None:
            hook(self, sender, amount)

        return True

    def transfer_from(self, spender, owner, recipient, amount):
        """
        Pulls tokens from ``owner`` on behalf of ``spender``.

        The allowance is checked and spent before the balance moves.
        """
        require_positive(amount)

        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise AuthorizationError(
                INSUFFICIENT_ALLOWANCE,
                f"{spender} may pull {allowed} {self.symbol} from {owner}, requested {amount}",
            )
        if self.balances.get(owner, 0) < amount:
            raise EconomicLimitError(
                INSUFFICIENT_BALANCE,
                f"{owner} holds {self.balance_of(owner)} {self.symbol}, needs {amount}",
            )

        self.allowances[owner][spender] = allowed - amount
        return self.transfer(owner, recipient, amount)

    def mint(self, caller, recipient, amount):
        """Create ``amount`` new tokens for ``recipient``. Minters only."""
        if caller not in self.minters:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} is not a minter of {self.symbol}")
        require_positive(amount)
        self._mint(recipient, amount)
        return True

    def burn(self, from_account, amount):
        """
        Destroy tokens held by ``from_account``.

        A burn lowers total supply, which decays the pool fee and raises
        the floor price.
        """
        require_positive(amount)

        from_balance = self.balances.get(from_account, 0)
        if from_balance < amount:
            raise EconomicLimitError(
                INSUFFICIENT_BALANCE,
                f"{from_account} holds {from_balance} {self.symbol}, cannot burn {amount}",
            )

        self.balances[from_account] = from_balance - amount
        self.total_supply -= amount

        logger.info("Burned %d %s from %s, supply now %d", amount, self.symbol, from_account, self.total_supply)
        return True

    def _mint(self, recipient, amount):
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.total_supply += amount
