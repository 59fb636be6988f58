"""
Floor price (pMin) calculation.

pMin is the average price at which every collateral token held outside the
pool could be sold into it in one trade, minus the recovery bounty haircut.
Because the pool's principal liquidity can never be withdrawn, this price is
a floor: no sequence of trades can push the value of the outstanding supply
below it. Borrowing is sized against pMin; health is judged at spot.

The function never raises. Any degenerate or overflowing input returns 0,
which callers read as "cannot lend against this pool".
"""

from constants import WAD, BASIS_POINTS, LIQ_BOUNTY_BPS, MAX_UINT256, MIN_X_FINAL


def spot_price(tok_reserves: int, qt_reserves: int) -> int:
    """Marginal quote-per-collateral price implied by the reserves, in WAD."""
    if tok_reserves == 0:
        return 0
    return qt_reserves * WAD // tok_reserves


def calculate_pmin(
    tok_reserves: int,
    qt_reserves: int,
    tok_total_supply: int,
    fee_bps: int,
    liq_bounty_bps: int = LIQ_BOUNTY_BPS,
) -> int:
    """
    Calculate the floor price of the collateral token in quote units (WAD).

    Args:
        tok_reserves: Collateral token reserve of the pool (T)
        qt_reserves: Quote token reserve of the pool (Q)
        tok_total_supply: Circulating collateral token supply (S)
        fee_bps: Current trade fee in basis points (f)
        liq_bounty_bps: Haircut applied to the average dump price

    Returns:
        pMin in WAD, or 0 when the pool cannot back any loan
    """
    if tok_total_supply == 0 or tok_reserves == 0 or qt_reserves == 0:
        return 0

    haircut = BASIS_POINTS - liq_bounty_bps

    # Nothing outside the pool: the floor is the discounted spot price
    if tok_total_supply <= tok_reserves:
        return spot_price(tok_reserves, qt_reserves) * haircut // BASIS_POINTS

    delta_x = tok_total_supply - tok_reserves
    delta_x_eff = delta_x * (BASIS_POINTS - fee_bps) // BASIS_POINTS
    x_final = tok_reserves + delta_x_eff
    if x_final < MIN_X_FINAL:
        return 0

    # Unreachable from TradingPool, whose reserves fit in 112 bits; guards direct callers
    k = tok_reserves * qt_reserves
    if k > MAX_UINT256:
        return 0

    y_final = k // x_final
    if y_final >= qt_reserves:
        return 0

    delta_y = qt_reserves - y_final

    # Average over the nominal amount dumped: the fee is a loss, not a price basis
    pmin_gross = delta_y * WAD // delta_x
    return pmin_gross * haircut // BASIS_POINTS


def post_dump_quote_reserve(tok_reserves: int, qt_reserves: int, tok_total_supply: int, fee_bps: int) -> int:
    """Quote reserve left in the pool after the dump that pMin assumes."""
    if tok_total_supply <= tok_reserves or tok_reserves == 0:
        return qt_reserves
    delta_x_eff = (tok_total_supply - tok_reserves) * (BASIS_POINTS - fee_bps) // BASIS_POINTS
    return tok_reserves * qt_reserves // (tok_reserves + delta_x_eff)
