"""
Proportional market maker curve, integer 1e18 fixed point.

The price moves away from the oracle price ``i`` in proportion to how far a
real reserve has drifted from its virtual target, scaled by the slippage
coefficient ``k`` (0 = flat oracle price, 1e18 = full deviation).
"""
from __future__ import annotations
import logging

from .config import ONE
from .errors import CoefficientOutOfRange, InputError, InsufficientLiquidity, ZeroAmount

logger = logging.getLogger(__name__)


def isqrt(y: int) -> int:
    """Babylonian integer square root, rounded down."""
    if y < 0:
        raise InputError("square root of a negative number")
    if y > 3:
        z = y
        x = y // 2 + 1
        while x < z:
            z = x
            x = (y // x + x) // 2
        return z
    if y != 0:
        return 1
    return 0


def price(oracle_price: int, k: int, quote_reserve: int, v_quote: int) -> int:
    if v_quote == 0:
        raise InputError("virtual quote reserve is zero")
    if quote_reserve >= v_quote:
        adj = k * (quote_reserve - v_quote) // v_quote
        return oracle_price * (ONE + adj) // ONE
    adj = k * (v_quote - quote_reserve) // v_quote
    return oracle_price * (ONE - adj) // ONE


def swap_output(amount_in: int, reserve_in: int, reserve_out: int,
                v_reserve_in: int, v_reserve_out: int, k: int, oracle_price: int) -> int:
    """
    Amount out for ``amount_in`` at a deviation-adjusted oracle price.

    ``oracle_price`` is the price of the input asset in units of the output
    asset. When the curve quotes nothing, or the whole output reserve, the
    quote falls back to a constant product over max(real, virtual) reserves.
    """
    if amount_in <= 0:
        raise ZeroAmount(f"amount in must be positive, got {amount_in}")
    if v_reserve_in == 0 or v_reserve_out == 0:
        raise InputError("virtual reserve is zero")
    if k > ONE:
        raise CoefficientOutOfRange(f"k={k} exceeds 1e18")
    if oracle_price == 0:
        raise InputError("oracle price is zero")

    new_reserve_in = reserve_in + amount_in
    if new_reserve_in >= v_reserve_in:
        adj = k * (new_reserve_in - v_reserve_in) // v_reserve_in
        # input side is over target: each unit in is worth less
        adjusted = oracle_price * (ONE - adj) // ONE if adj < ONE else 0
    else:
        adj = k * (v_reserve_in - new_reserve_in) // v_reserve_in
        adjusted = oracle_price * (ONE + adj) // ONE
    amount_out = amount_in * adjusted // ONE

    if amount_out == 0 or amount_out >= reserve_out:
        eff_in = max(reserve_in, v_reserve_in)
        eff_out = max(reserve_out, v_reserve_out)
        amount_out = amount_in * eff_out // (eff_in + amount_in)
        logger.debug("constant-product fallback: in=%d eff_in=%d eff_out=%d out=%d",
                     amount_in, eff_in, eff_out, amount_out)

    if amount_out == 0:
        raise InsufficientLiquidity("swap output is zero")
    if amount_out > reserve_out:
        raise InsufficientLiquidity(f"output {amount_out} exceeds reserve {reserve_out}")
    return amount_out


def lp_shares(base_amount: int, quote_amount: int, total_base: int,
              total_quote: int, total_supply: int) -> int:
    if total_supply == 0:
        return isqrt(base_amount * quote_amount)
    if total_base == 0 or total_quote == 0:
        raise InsufficientLiquidity("pool has supply but an empty reserve")
    return min(
        base_amount * total_supply // total_base,
        quote_amount * total_supply // total_quote,
    )


def invert_price(p: int) -> int:
    """Price of the other side of the pair, 1e18 fixed point."""
    if p == 0:
        raise InputError("price is zero")
    return ONE * ONE // p
