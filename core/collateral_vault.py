"""
Collateral Vault Model for the floor-price lending market.

This module simulates the vault where holders of the collateral token lock it
and borrow quote tokens from the lending pool against it.

Each account moves through these states:
    empty -> collateralized -> borrowed -> marked -> empty (recovered)
with repayment leading back from borrowed or marked to collateralized.

Two prices are used and never mixed:
1. Borrowing is sized by the floor price: debt may never exceed
   collateral * pMin at the moment it increases.
2. Health is judged at the pool's spot price: a position whose collateral is
   worth no more than its debt at spot can be marked out of the money.

Marking and recovery are permissionless. Once the grace period after a mark
has elapsed, anyone can sell the position's collateral into the pool, repay
the lending pool and collect a bounty from any surplus. A shortfall is
written off through the lending pool instead of blocking the recovery.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from chain import Contract, non_reentrant
from config import DEFAULT_CONFIG
from constants import WAD, BASIS_POINTS
from errors import (
    AuthorizationError,
    EconomicLimitError,
    StateError,
    require_positive,
    INSUFFICIENT_ALLOWANCE,
    INSUFFICIENT_BALANCE,
    INSUFFICIENT_COLLATERAL,
    INSUFFICIENT_LIQUIDITY,
    OUTSTANDING_DEBT,
    EXCEEDS_PMIN,
    POSITION_HEALTHY,
    ALREADY_MARKED,
    NOT_MARKED,
    GRACE_PERIOD_ACTIVE,
    NO_POSITION,
)

logger = logging.getLogger(__name__)


@dataclass
class BorrowSnapshot:
    """
    An account's borrow position.

    Debt with interest is principal * current index / interest_index.
    """
    principal: int = 0
    interest_index: int = 0


@dataclass
class OTMPosition:
    """Out-of-the-money marker: when the position was observed unhealthy."""
    mark_time: int = 0
    is_otm: bool = False


@dataclass
class AccountState:
    collateral: int
    debt: int
    is_healthy: bool
    is_otm: bool
    time_until_recoverable: int


@dataclass
class RecoveryResult:
    """Where the proceeds of a recovery went."""
    collateral_sold: int
    debt: int
    quote_received: int
    repaid: int
    bounty: int
    surplus_to_lenders: int
    loss: int


class CollateralVault(Contract):
    """
    Simulates the collateral vault of one market.
    """

    def __init__(self, chain, collateral_token, quote_token, pool, lending_pool,
                 config=DEFAULT_CONFIG, address="collateral_vault"):
        super().__init__(chain, address)
        self.collateral_token = collateral_token
        self.quote_token = quote_token
        self.pool = pool
        self.lending_pool = lending_pool
        self.grace_period = config.grace_period
        self.liq_bounty_bps = config.liq_bounty_bps

        self.collateral_balances: Dict[str, int] = {}
        self.account_borrows: Dict[str, BorrowSnapshot] = {}
        self.otm_positions: Dict[str, OTMPosition] = {}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def collateral_of(self, account):
        return self.collateral_balances.get(account, 0)

    def principal_of(self, account):
        return self.account_borrows.get(account, BorrowSnapshot()).principal

    def debt_of(self, account):
        """Debt with interest as of now, accrued or not."""
        return self._debt(account, self.lending_pool.pending_borrow_index())

    def max_borrow(self, account):
        """Collateral valued at the floor price."""
        return self.collateral_of(account) * self.pool.pmin() // WAD

    def is_otm(self, account):
        marker = self.otm_positions.get(account)
        return marker is not None and marker.is_otm

    def is_position_healthy(self, account):
        """
        True while the collateral is worth more than the debt at spot.

        Positions without debt are always healthy.
        """
        return self._is_healthy(self.collateral_of(account), self.debt_of(account))

    def time_until_recoverable(self, account):
        marker = self.otm_positions.get(account)
        if marker is None or not marker.is_otm:
            return 0
        return max(marker.mark_time + self.grace_period - self.chain.now(), 0)

    def get_account_state(self, account):
        collateral = self.collateral_of(account)
        debt = self.debt_of(account)
        return AccountState(
            collateral=collateral,
            debt=debt,
            is_healthy=self._is_healthy(collateral, debt),
            is_otm=self.is_otm(account),
            time_until_recoverable=self.time_until_recoverable(account),
        )

    # ------------------------------------------------------------------
    # Collateral
    # ------------------------------------------------------------------

    @non_reentrant
    def deposit_collateral(self, caller, amount):
        """
        Lock collateral tokens for ``caller``.

        Args:
            caller: Depositing account, which must have approved the vault
            amount: Collateral tokens to lock
        """
        require_positive(amount)
        self._require_pullable(self.collateral_token, caller, amount)

        # Keep the debt side current so limit checks elsewhere are never stale
        self.lending_pool.accrue()

        self.collateral_balances[caller] = self.collateral_of(caller) + amount
        self.collateral_token.transfer_from(self.address, caller, self.address, amount)

        logger.info("%s deposited %d collateral", caller, amount)
        return amount

    @non_reentrant
    def withdraw_collateral(self, caller, amount):
        """Return collateral to an account that owes nothing."""
        require_positive(amount)
        if self.principal_of(caller) != 0:
            raise EconomicLimitError(OUTSTANDING_DEBT, f"{caller} must repay before withdrawing")
        balance = self.collateral_of(caller)
        if amount > balance:
            raise EconomicLimitError(INSUFFICIENT_COLLATERAL, f"{caller} has {balance} collateral")

        self.collateral_balances[caller] = balance - amount
        self.collateral_token.transfer(self.address, caller, amount)

        logger.info("%s withdrew %d collateral", caller, amount)
        return amount

    # ------------------------------------------------------------------
    # Debt
    # ------------------------------------------------------------------

    @non_reentrant
    def borrow(self, caller, amount):
        """
        Borrow quote tokens against locked collateral.

        The new debt, interest included, must not exceed collateral * pMin.

        Raises:
            EconomicLimitError: EXCEEDS_PMIN when the floor price cannot back
                the loan, INSUFFICIENT_LIQUIDITY when the lending pool is dry
        """
        require_positive(amount)

        index = self.lending_pool.pending_borrow_index()
        debt = self._debt(caller, index)
        max_borrow = self.max_borrow(caller)
        if debt + amount > max_borrow:
            raise EconomicLimitError(
                EXCEEDS_PMIN,
                f"Debt {debt} + {amount} exceeds floor-price capacity {max_borrow}",
            )
        if self.lending_pool.cash() < amount:
            raise EconomicLimitError(INSUFFICIENT_LIQUIDITY, f"Lending pool holds {self.lending_pool.cash()}")

        self.lending_pool.accrue()
        self.account_borrows[caller] = BorrowSnapshot(debt + amount, self.lending_pool.borrow_index)
        # Healthy by construction after a borrow
        self.otm_positions.pop(caller, None)

        self.lending_pool.borrow(self.address, amount)
        self.quote_token.transfer(self.address, caller, amount)

        logger.info("%s borrowed %d (debt now %d, limit %d)", caller, amount, debt + amount, max_borrow)
        return amount

    @non_reentrant
    def repay(self, caller, amount):
        """
        Repay up to the current debt.

        Repaying at least the debt clears the position and any marker.

        Returns:
            Amount actually repaid
        """
        require_positive(amount)

        index = self.lending_pool.pending_borrow_index()
        debt = self._debt(caller, index)
        if debt == 0:
            return 0
        repay_amount = min(amount, debt)
        self._require_pullable(self.quote_token, caller, repay_amount)

        self.lending_pool.accrue()
        if repay_amount == debt:
            self.account_borrows.pop(caller, None)
        else:
            self.account_borrows[caller] = BorrowSnapshot(debt - repay_amount, self.lending_pool.borrow_index)
        self.otm_positions.pop(caller, None)

        self.quote_token.transfer_from(self.address, caller, self.address, repay_amount)
        self._repay_lending_pool(repay_amount)

        logger.info("%s repaid %d of %d", caller, repay_amount, debt)
        return repay_amount

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def mark_otm(self, caller, account):
        """
        Start the grace period clock on an unhealthy position.

        Anyone may call this; it moves no funds.
        """
        if self.is_otm(account):
            raise StateError(ALREADY_MARKED, f"{account} is already marked")
        if self.is_position_healthy(account):
            raise StateError(POSITION_HEALTHY, f"{account} is healthy")

        now = self.chain.now()
        self.otm_positions[account] = OTMPosition(mark_time=now, is_otm=True)
        logger.info("%s marked %s out of the money at %d", caller, account, now)

    @non_reentrant
    def recover(self, caller, account):
        """
        Sell a marked position's collateral into the pool and settle its debt.

        Any surplus over the debt pays the caller's bounty and the rest goes
        to lenders; a shortfall is written off by the lending pool.

        Raises:
            StateError: NOT_MARKED, NO_POSITION, or GRACE_PERIOD_ACTIVE (retryable)

        Returns:
            RecoveryResult
        """
        marker = self.otm_positions.get(account)
        if marker is None or not marker.is_otm:
            raise StateError(NOT_MARKED, f"{account} has not been marked")
        collateral = self.collateral_of(account)
        if collateral == 0 or self.principal_of(account) == 0:
            raise StateError(NO_POSITION, f"{account} has nothing to recover")
        if self.chain.now() < marker.mark_time + self.grace_period:
            raise StateError(
                GRACE_PERIOD_ACTIVE,
                f"{account} is recoverable in {self.time_until_recoverable(account)}s",
            )

        self.lending_pool.accrue()
        debt = self._debt(account, self.lending_pool.borrow_index)
        quote_out = self.pool.get_amount_out(collateral, self.collateral_token)

        self.collateral_balances.pop(account, None)
        self.account_borrows.pop(account, None)
        self.otm_positions.pop(account, None)

        self.collateral_token.transfer(self.address, self.pool.address, collateral)
        if quote_out > 0:
            self.pool.trade(self.address, 0, quote_out, self.address)

        repaid = self._repay_lending_pool(min(quote_out, debt))

        bounty = surplus = loss = 0
        if quote_out > debt:
            excess = quote_out - debt
            bounty = min(excess, quote_out * self.liq_bounty_bps // BASIS_POINTS)
            surplus = excess - bounty
            if surplus > 0:
                self.quote_token.transfer(self.address, self.lending_pool.address, surplus)
            if bounty > 0:
                self.quote_token.transfer(self.address, caller, bounty)
        elif quote_out < debt:
            loss = self.lending_pool.absorb_loss(self.address, debt - quote_out)

        result = RecoveryResult(collateral, debt, quote_out, repaid, bounty, surplus, loss)
        if loss:
            logger.warning("Recovered %s with shortfall: %s", account, result)
        else:
            logger.info("Recovered %s: %s", account, result)
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _debt(self, account, index):
        snapshot = self.account_borrows.get(account)
        if snapshot is None or snapshot.principal == 0 or snapshot.interest_index == 0:
            return 0
        return snapshot.principal * index // snapshot.interest_index

    def _is_healthy(self, collateral, debt):
        if debt == 0:
            return True
        reserve_collateral, reserve_quote = self.pool.get_reserves()
        if reserve_collateral == 0:
            return False
        return collateral * reserve_quote // reserve_collateral > debt

    def _repay_lending_pool(self, amount):
        """Hand ``amount`` held by the vault to the lending pool."""
        if amount <= 0:
            return 0
        self.quote_token.approve(self.address, self.lending_pool.address, amount)
        repaid = self.lending_pool.repay(self.address, amount)
        if repaid < amount:
            # Rounding left the account's debt above the pool aggregate
            self.quote_token.transfer(self.address, self.lending_pool.address, amount - repaid)
        return repaid

    def _require_pullable(self, token, owner, amount):
        if token.allowance(owner, self.address) < amount:
            raise AuthorizationError(INSUFFICIENT_ALLOWANCE, f"{owner} has not approved {amount} {token.symbol}")
        if token.balance_of(owner) < amount:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, f"{owner} holds {token.balance_of(owner)} {token.symbol}")
