"""
Unit tests for the floor price (pMin) calculation.
"""

import unittest
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from constants import WAD, BASIS_POINTS, LIQ_BOUNTY_BPS
from floor_price import calculate_pmin, spot_price, post_dump_quote_reserve


class TestFloorPrice(unittest.TestCase):
    def setUp(self):
        """Reserves of a pool holding 600k tokens against 100 quote"""
        self.tok = 600_000 * WAD
        self.qt = 100 * WAD
        self.fee = 30

    def test_small_outside_supply_can_exceed_spot(self):
        """A tiny outside supply rounds the released quote up to one unit"""
        tok = 50_502_750_931_482_200_555_763_397_719
        qt = 305_575_454_573_192_444_122
        supply = tok + 100_553_305

        spot = spot_price(tok, qt)
        pmin = calculate_pmin(tok, qt, supply, 30)

        self.assertAlmostEqual(spot, 6_050_669_496, delta=10_000_000)
        self.assertAlmostEqual(pmin, 9_895_248_992, delta=1_000_000)
        self.assertGreater(pmin, spot)

    def test_raw_unit_pool_floor_below_spot(self):
        """T=600,000, Q=100, S=1,000,000 at 0.3% fee"""
        pmin = calculate_pmin(600_000, 100, 1_000_000, 30)
        spot = spot_price(600_000, 100)

        self.assertGreater(pmin, 0)
        self.assertLess(pmin, spot)

    def test_worked_example(self):
        """Step-by-step dump of the 400k outside tokens"""
        supply = 1_000_000 * WAD
        delta_x = supply - self.tok
        delta_x_eff = delta_x * (BASIS_POINTS - self.fee) // BASIS_POINTS
        y_final = self.tok * self.qt // (self.tok + delta_x_eff)
        expected = (self.qt - y_final) * WAD // delta_x * (BASIS_POINTS - LIQ_BOUNTY_BPS) // BASIS_POINTS

        self.assertEqual(calculate_pmin(self.tok, self.qt, supply, self.fee), expected)

    def test_no_outside_supply_returns_discounted_spot(self):
        spot = spot_price(self.tok, self.qt)
        expected = spot * (BASIS_POINTS - LIQ_BOUNTY_BPS) // BASIS_POINTS

        self.assertEqual(calculate_pmin(self.tok, self.qt, self.tok, self.fee), expected)
        self.assertEqual(calculate_pmin(self.tok, self.qt, self.tok // 2, self.fee), expected)

    def test_zero_supply_returns_zero(self):
        self.assertEqual(calculate_pmin(self.tok, self.qt, 0, self.fee), 0)

    def test_empty_pool_returns_zero(self):
        self.assertEqual(calculate_pmin(0, self.qt, WAD, self.fee), 0)
        self.assertEqual(calculate_pmin(self.tok, 0, WAD, self.fee), 0)

    def test_overflowing_product_returns_zero(self):
        huge = 2**130
        self.assertEqual(calculate_pmin(huge, huge, huge * 2, self.fee), 0)

    def test_tiny_post_dump_reserve_returns_zero(self):
        """Post-dump reserve below the safety threshold"""
        self.assertEqual(calculate_pmin(10, 10, 11, self.fee), 0)

    def test_no_output_returns_zero(self):
        """A 100% fee means the dump lands nothing in the pool"""
        self.assertEqual(calculate_pmin(self.tok, self.qt, 2 * self.tok, BASIS_POINTS), 0)

    def test_burning_supply_never_lowers_the_floor(self):
        supplies = [s * WAD for s in (700_000, 800_000, 1_000_000, 2_000_000, 10_000_000)]
        floors = [calculate_pmin(self.tok, self.qt, s, self.fee) for s in supplies]

        for smaller_supply_floor, larger_supply_floor in zip(floors, floors[1:]):
            self.assertGreaterEqual(smaller_supply_floor, larger_supply_floor)

    def test_fee_lowers_average_price_over_nominal_amount(self):
        """The fee is lost value: averaged over the nominal dump, a higher fee lowers pMin"""
        supply = 1_000_000 * WAD
        floors = [calculate_pmin(self.tok, self.qt, supply, fee) for fee in (0, 30, 1000, 5000, 9900)]

        for lower_fee_floor, higher_fee_floor in zip(floors, floors[1:]):
            self.assertGreaterEqual(lower_fee_floor, higher_fee_floor)

    def test_fee_leaves_more_quote_in_pool(self):
        """A higher fee makes the dump less effective: more quote stays behind"""
        supply = 1_000_000 * WAD
        reserves = [post_dump_quote_reserve(self.tok, self.qt, supply, fee) for fee in (0, 30, 1000, 9900)]

        for lower_fee_reserve, higher_fee_reserve in zip(reserves, reserves[1:]):
            self.assertLessEqual(lower_fee_reserve, higher_fee_reserve)
        self.assertLess(reserves[-1], self.qt)

    def test_floor_below_spot_for_large_dump(self):
        pmin = calculate_pmin(self.tok, self.qt, 1_000_000 * WAD, self.fee)
        self.assertLess(pmin, spot_price(self.tok, self.qt))

    def test_custom_bounty(self):
        supply = 1_000_000 * WAD
        without_bounty = calculate_pmin(self.tok, self.qt, supply, self.fee, liq_bounty_bps=0)
        with_bounty = calculate_pmin(self.tok, self.qt, supply, self.fee)

        self.assertEqual(with_bounty, without_bounty * (BASIS_POINTS - LIQ_BOUNTY_BPS) // BASIS_POINTS)


if __name__ == "__main__":
    unittest.main()
