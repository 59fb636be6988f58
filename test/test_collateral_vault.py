"""
Unit tests for the collateral vault: floor-bounded borrowing, repayment and recovery.
"""

import unittest
import sys
import os

# Add the core and test directories to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from collateral_vault import OTMPosition
from constants import WAD, GRACE_PERIOD, BASIS_POINTS, LIQ_BOUNTY_BPS
from errors import ProtocolError
from market_fixtures import make_market

DAY = 24 * 60 * 60


class VaultTestCase(unittest.TestCase):
    def setUp(self):
        """
        Alice buys ~9,870 tokens for 10 quote; a lender supplies 10 quote.
        """
        self.chain, self.market = make_market(alice=11 * WAD, lender=10 * WAD, whale=500 * WAD)
        self.vault = self.market.vault
        self.lending = self.market.lending_pool
        self.tok = self.market.collateral_token
        self.qt = self.market.quote_token

        self.collateral = self.market.buy("alice", 10 * WAD)
        self.market.supply_liquidity("lender", 10 * WAD)

    def assertCode(self, context, code):
        self.assertIsInstance(context.exception, ProtocolError)
        self.assertEqual(context.exception.code, code)

    def open_max(self):
        return self.market.open_position("alice", self.collateral)

    def make_unhealthy(self):
        """Borrow at the floor and let 90 days of interest push the debt above spot value"""
        borrowed = self.open_max()
        self.chain.skip(90 * DAY)
        self.assertFalse(self.vault.is_position_healthy("alice"))
        return borrowed


class TestCollateral(VaultTestCase):
    def test_deposit_and_withdraw(self):
        self.tok.approve("alice", self.vault.address, self.collateral)
        self.vault.deposit_collateral("alice", self.collateral)

        self.assertEqual(self.vault.collateral_of("alice"), self.collateral)
        self.assertEqual(self.tok.balance_of(self.vault.address), self.collateral)
        self.assertEqual(self.tok.balance_of("alice"), 0)

        self.vault.withdraw_collateral("alice", self.collateral)
        self.assertEqual(self.vault.collateral_of("alice"), 0)
        self.assertEqual(self.tok.balance_of("alice"), self.collateral)

    def test_deposit_requires_approval(self):
        with self.assertRaises(ProtocolError) as context:
            self.vault.deposit_collateral("alice", self.collateral)
        self.assertCode(context, "INSUFFICIENT_ALLOWANCE")
        self.assertEqual(self.vault.collateral_of("alice"), 0)

    def test_withdraw_more_than_deposited(self):
        self.tok.approve("alice", self.vault.address, WAD)
        self.vault.deposit_collateral("alice", WAD)
        with self.assertRaises(ProtocolError) as context:
            self.vault.withdraw_collateral("alice", WAD + 1)
        self.assertCode(context, "INSUFFICIENT_COLLATERAL")

    def test_withdraw_blocked_by_debt(self):
        self.open_max()
        with self.assertRaises(ProtocolError) as context:
            self.vault.withdraw_collateral("alice", 1)
        self.assertCode(context, "OUTSTANDING_DEBT")


class TestBorrow(VaultTestCase):
    def setUp(self):
        super().setUp()
        self.tok.approve("alice", self.vault.address, self.collateral)
        self.vault.deposit_collateral("alice", self.collateral)

    def test_max_borrow_is_collateral_at_floor(self):
        pmin = self.market.pool.pmin()
        self.assertGreater(pmin, 0)
        self.assertEqual(self.vault.max_borrow("alice"), self.collateral * pmin // WAD)
        self.assertLess(pmin, self.market.pool.spot_price())

    def test_borrow_exactly_at_floor(self):
        limit = self.vault.max_borrow("alice")
        self.vault.borrow("alice", limit)

        self.assertEqual(self.vault.debt_of("alice"), limit)
        self.assertEqual(self.qt.balance_of("alice"), WAD + limit)
        self.assertEqual(self.lending.total_borrows, limit)
        self.assertEqual(self.qt.balance_of(self.vault.address), 0)

    def test_borrow_above_floor_rejected(self):
        limit = self.vault.max_borrow("alice")
        with self.assertRaises(ProtocolError) as context:
            self.vault.borrow("alice", limit + 1)
        self.assertCode(context, "EXCEEDS_PMIN")
        self.assertEqual(self.vault.debt_of("alice"), 0)

        self.vault.borrow("alice", limit // 2)
        with self.assertRaises(ProtocolError) as context:
            self.vault.borrow("alice", limit - limit // 2 + 1)
        self.assertCode(context, "EXCEEDS_PMIN")

    def test_accrued_interest_counts_against_limit(self):
        limit = self.vault.max_borrow("alice")
        self.vault.borrow("alice", limit // 2)
        self.chain.skip(30 * DAY)

        headroom = limit - self.vault.debt_of("alice")
        self.assertLess(headroom, limit - limit // 2)
        with self.assertRaises(ProtocolError) as context:
            self.vault.borrow("alice", headroom + 1)
        self.assertCode(context, "EXCEEDS_PMIN")

    def test_borrow_limited_by_lending_cash(self):
        self.lending.redeem("lender", self.lending.shares_of("lender"))
        with self.assertRaises(ProtocolError) as context:
            self.vault.borrow("alice", 1)
        self.assertCode(context, "INSUFFICIENT_LIQUIDITY")

    def test_floor_covers_debt_at_borrow_time(self):
        """Selling all collateral into the pool always repays a floor-sized loan"""
        self.vault.borrow("alice", self.vault.max_borrow("alice"))
        proceeds = self.market.pool.get_amount_out(self.collateral, self.tok)
        self.assertGreaterEqual(proceeds, self.vault.debt_of("alice"))

    def test_books_balance_after_borrow(self):
        limit = self.vault.max_borrow("alice")
        self.vault.borrow("alice", limit)
        self.assertEqual(self.lending.cash() + self.lending.total_borrows, 10 * WAD)
        self.assertEqual(self.lending.total_borrows, self.vault.debt_of("alice"))

    def test_reentrant_borrow_rejected(self):
        errors = []

        def reenter(token, sender, amount):
            try:
                self.vault.borrow("alice", 1)
            except ProtocolError as exc:
                errors.append(exc.code)

        self.qt.receive_hooks["alice"] = reenter
        self.vault.borrow("alice", WAD)

        self.assertEqual(errors, ["REENTRANCY"])
        self.assertEqual(self.vault.debt_of("alice"), WAD)


class TestRepay(VaultTestCase):
    def test_partial_repay(self):
        borrowed = self.open_max()
        self.qt.approve("alice", self.vault.address, WAD)

        self.assertEqual(self.vault.repay("alice", WAD), WAD)
        self.assertEqual(self.vault.debt_of("alice"), borrowed - WAD)
        self.assertEqual(self.lending.total_borrows, borrowed - WAD)

    def test_full_repay_closes_position(self):
        self.open_max()
        self.chain.skip(10 * DAY)
        debt = self.vault.debt_of("alice")
        self.qt.approve("alice", self.vault.address, 100 * WAD)

        self.assertEqual(self.vault.repay("alice", 100 * WAD), debt)
        self.assertEqual(self.vault.debt_of("alice"), 0)
        self.assertEqual(self.vault.principal_of("alice"), 0)
        self.assertEqual(self.vault.repay("alice", WAD), 0)

        self.vault.withdraw_collateral("alice", self.collateral)
        self.assertEqual(self.tok.balance_of("alice"), self.collateral)

    def test_repay_requires_approval(self):
        self.open_max()
        with self.assertRaises(ProtocolError) as context:
            self.vault.repay("alice", WAD)
        self.assertCode(context, "INSUFFICIENT_ALLOWANCE")

    def test_repay_clears_marker(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        self.qt.approve("alice", self.vault.address, WAD)

        self.vault.repay("alice", WAD)

        self.assertFalse(self.vault.is_otm("alice"))
        self.assertEqual(self.vault.time_until_recoverable("alice"), 0)
        with self.assertRaises(ProtocolError) as context:
            self.vault.recover("keeper", "alice")
        self.assertCode(context, "NOT_MARKED")


class TestMarking(VaultTestCase):
    def test_position_without_debt_cannot_be_marked(self):
        self.tok.approve("alice", self.vault.address, self.collateral)
        self.vault.deposit_collateral("alice", self.collateral)
        self.assertTrue(self.vault.is_position_healthy("alice"))

        with self.assertRaises(ProtocolError) as context:
            self.vault.mark_otm("keeper", "alice")
        self.assertCode(context, "POSITION_HEALTHY")

    def test_healthy_position_cannot_be_marked(self):
        self.open_max()
        with self.assertRaises(ProtocolError) as context:
            self.vault.mark_otm("keeper", "alice")
        self.assertCode(context, "POSITION_HEALTHY")

    def test_mark_once(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        with self.assertRaises(ProtocolError) as context:
            self.vault.mark_otm("someone_else", "alice")
        self.assertCode(context, "ALREADY_MARKED")

    def test_account_state(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        self.chain.skip(DAY)

        state = self.vault.get_account_state("alice")
        self.assertEqual(state.collateral, self.collateral)
        self.assertEqual(state.debt, self.vault.debt_of("alice"))
        self.assertFalse(state.is_healthy)
        self.assertTrue(state.is_otm)
        self.assertEqual(state.time_until_recoverable, GRACE_PERIOD - DAY)


class TestRecovery(VaultTestCase):
    def test_recover_requires_mark(self):
        self.make_unhealthy()
        with self.assertRaises(ProtocolError) as context:
            self.vault.recover("keeper", "alice")
        self.assertCode(context, "NOT_MARKED")

    def test_grace_period(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        marked_at = self.chain.now()

        self.chain.warp(marked_at + GRACE_PERIOD - 1)
        with self.assertRaises(ProtocolError) as context:
            self.vault.recover("keeper", "alice")
        self.assertCode(context, "GRACE_PERIOD_ACTIVE")
        self.assertTrue(context.exception.retryable)
        self.assertEqual(self.vault.collateral_of("alice"), self.collateral)
        self.assertTrue(self.vault.is_otm("alice"))

        self.chain.warp(marked_at + GRACE_PERIOD + 1)
        result = self.vault.recover("keeper", "alice")

        self.assertEqual(result.collateral_sold, self.collateral)
        self.assertEqual(self.vault.collateral_of("alice"), 0)
        self.assertEqual(self.vault.debt_of("alice"), 0)
        self.assertFalse(self.vault.is_otm("alice"))
        self.assertEqual(self.tok.balance_of(self.vault.address), 0)

    def test_shortfall_is_written_off(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        self.chain.skip(GRACE_PERIOD)

        result = self.vault.recover("keeper", "alice")

        self.assertGreater(result.loss, 0)
        self.assertEqual(result.repaid, result.quote_received)
        self.assertEqual(result.bounty, 0)
        self.assertEqual(result.surplus_to_lenders, 0)
        self.assertEqual(result.quote_received + result.loss, result.debt)
        self.assertEqual(self.qt.balance_of("keeper"), 0)
        self.assertLess(self.lending.total_borrows, 1_000)
        self.assertEqual(self.qt.balance_of(self.vault.address), 0)

    def test_surplus_pays_bounty_then_lenders(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        # The price recovers after the mark; a marked position is still recoverable
        self.market.buy("whale", 500 * WAD)
        self.chain.skip(GRACE_PERIOD)
        lender_value_before = self.lending.convert_to_assets(self.lending.shares_of("lender"))

        result = self.vault.recover("keeper", "alice")

        self.assertEqual(result.loss, 0)
        self.assertEqual(result.repaid, result.debt)
        self.assertEqual(result.bounty, result.quote_received * LIQ_BOUNTY_BPS // BASIS_POINTS)
        self.assertEqual(result.bounty + result.surplus_to_lenders, result.quote_received - result.debt)
        self.assertGreater(result.surplus_to_lenders, 0)
        self.assertEqual(self.qt.balance_of("keeper"), result.bounty)
        self.assertGreater(
            self.lending.convert_to_assets(self.lending.shares_of("lender")),
            lender_value_before,
        )
        self.assertEqual(self.qt.balance_of(self.vault.address), 0)

    def test_recover_empty_account(self):
        self.vault.otm_positions["nobody"] = OTMPosition(mark_time=self.chain.now(), is_otm=True)
        with self.assertRaises(ProtocolError) as context:
            self.vault.recover("keeper", "nobody")
        self.assertCode(context, "NO_POSITION")

    def test_reentrant_recover_rejected(self):
        self.make_unhealthy()
        self.vault.mark_otm("keeper", "alice")
        self.market.buy("whale", 500 * WAD)
        self.chain.skip(GRACE_PERIOD)
        errors = []

        def reenter(token, sender, amount):
            try:
                self.vault.recover("keeper", "alice")
            except ProtocolError as exc:
                errors.append(exc.code)

        self.qt.receive_hooks["keeper"] = reenter
        result = self.vault.recover("keeper", "alice")

        self.assertEqual(errors, ["REENTRANCY"])
        self.assertGreater(result.bounty, 0)


if __name__ == "__main__":
    unittest.main()
