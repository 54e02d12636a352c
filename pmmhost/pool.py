from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, Tuple
import logging

logger = logging.getLogger(__name__)

from . import collaborators as collab
from . import pmm_math
from .config import BPS, ONE
from .core import Address, FeeBreakdown, FeeSchedule, Vault, require_address
from .errors import (
    AccessDenied,
    CircuitBreakerTripped,
    CoefficientOutOfRange,
    InputError,
    InsufficientFees,
    InsufficientShares,
    Paused,
    PoolInactive,
    SlippageExceeded,
    UnknownPool,
    ZeroAmount,
)
from .guard import nonreentrant
from .modules import Module, entrypoint
from .storage import StorageSpace, declare_region

if TYPE_CHECKING:
    from .host import CallContext


# -----------------------------
# Storage
# -----------------------------
@dataclass
class Pool:
    pool_id: int
    base_asset: str
    quote_asset: str
    base_reserve: int
    quote_reserve: int
    virtual_base: int
    virtual_quote: int
    k: int
    oracle_price: int   # quote per base, 1e18 fixed point
    active: bool = True

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "base_asset": self.base_asset,
            "quote_asset": self.quote_asset,
            "base_reserve": self.base_reserve,
            "quote_reserve": self.quote_reserve,
            "virtual_base": self.virtual_base,
            "virtual_quote": self.virtual_quote,
            "k": self.k,
            "oracle_price": self.oracle_price,
            "active": self.active,
        }

@dataclass
class ExchangeLayout:
    pools: Dict[int, Pool] = field(default_factory=dict)
    pool_count: int = 0
    shares: Dict[Tuple[int, Address], int] = field(default_factory=dict)
    total_supply: Dict[int, int] = field(default_factory=dict)
    pool_fees: Dict[Tuple[int, str], int] = field(default_factory=dict)  # (pool_id, asset) -> accrued
    protocol_fees: Dict[str, int] = field(default_factory=dict)          # asset -> accrued
    fee_bps: int = 0
    protocol_share_bps: int = 0

EXCHANGE = declare_region("pmmhost.exchange.pools", ExchangeLayout)


@dataclass
class SwapQuote:
    pool_id: int
    asset_in: str
    amount_in: int
    asset_out: str
    gross_out: int
    fees: FeeBreakdown

    @property
    def amount_out(self) -> int:
        return self.gross_out - self.fees.total_fee

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "asset_in": self.asset_in,
            "amount_in": self.amount_in,
            "asset_out": self.asset_out,
            "gross_out": self.gross_out,
            "amount_out": self.amount_out,
            "fees": self.fees.to_dict(),
        }


# -----------------------------
# Engine
# -----------------------------
class PoolEngine:
    """Pricing and bookkeeping over the exchange region. Holds no state of its own."""

    def __init__(self, storage: StorageSpace, vault: Vault, custody: Address) -> None:
        self.layout = EXCHANGE.load(storage)
        self.vault = vault
        self.custody = custody

    def get(self, pool_id: int) -> Pool:
        pool = self.layout.pools.get(pool_id)
        if pool is None:
            raise UnknownPool(f"pool {pool_id} does not exist")
        return pool

    def fee_schedule(self) -> FeeSchedule:
        return FeeSchedule(self.layout.fee_bps, self.layout.protocol_share_bps)

    def price(self, pool_id: int) -> int:
        pool = self.get(pool_id)
        return pmm_math.price(pool.oracle_price, pool.k, pool.quote_reserve, pool.virtual_quote)

    def shares_of(self, pool_id: int, holder: Address) -> int:
        return int(self.layout.shares.get((pool_id, holder), 0))

    def create(self, creator: Address, base_asset: str, quote_asset: str,
               base_reserve: int, quote_reserve: int, virtual_base: int,
               virtual_quote: int, k: int, oracle_price: int) -> Tuple[Pool, int]:
        if not base_asset or not quote_asset:
            raise InputError("asset id is empty")
        if base_asset == quote_asset:
            raise InputError("base and quote assets are identical")
        if virtual_base <= 0 or virtual_quote <= 0:
            raise InputError("virtual reserves must be positive")
        if k < 0 or k > ONE:
            raise CoefficientOutOfRange(f"k={k} outside [0, 1e18]")
        if oracle_price <= 0:
            raise InputError("oracle price must be positive")
        if base_reserve < 0 or quote_reserve < 0 or (base_reserve == 0) != (quote_reserve == 0):
            raise InputError("initial reserves must both be zero or both positive")

        self.layout.pool_count += 1
        pool = Pool(
            pool_id=self.layout.pool_count,
            base_asset=base_asset,
            quote_asset=quote_asset,
            base_reserve=0,
            quote_reserve=0,
            virtual_base=int(virtual_base),
            virtual_quote=int(virtual_quote),
            k=int(k),
            oracle_price=int(oracle_price),
        )
        self.layout.pools[pool.pool_id] = pool
        self.layout.total_supply[pool.pool_id] = 0
        shares = 0
        if base_reserve > 0:
            shares = self.deposit(pool, creator, int(base_reserve), int(quote_reserve))
        return pool, shares

    def deposit(self, pool: Pool, holder: Address, base_amount: int, quote_amount: int) -> int:
        if base_amount <= 0 or quote_amount <= 0:
            raise ZeroAmount("liquidity amounts must be positive")
        supply = self.layout.total_supply.get(pool.pool_id, 0)
        shares = pmm_math.lp_shares(base_amount, quote_amount,
                                    pool.base_reserve, pool.quote_reserve, supply)
        if shares == 0:
            raise InsufficientShares("deposit too small to mint shares")

        self.vault.transfer(pool.base_asset, holder, self.custody, base_amount)
        self.vault.transfer(pool.quote_asset, holder, self.custody, quote_amount)
        pool.base_reserve += base_amount
        pool.quote_reserve += quote_amount
        key = (pool.pool_id, holder)
        self.layout.shares[key] = self.layout.shares.get(key, 0) + shares
        self.layout.total_supply[pool.pool_id] = supply + shares
        return shares

    def withdraw(self, pool: Pool, holder: Address, shares: int) -> Tuple[int, int]:
        if shares <= 0:
            raise ZeroAmount("share amount is zero")
        have = self.shares_of(pool.pool_id, holder)
        if have < shares:
            raise InsufficientShares(f"{holder} holds {have} shares, burns {shares}")
        supply = self.layout.total_supply[pool.pool_id]
        base_out = shares * pool.base_reserve // supply
        quote_out = shares * pool.quote_reserve // supply
        if base_out == 0 and quote_out == 0:
            raise InsufficientShares("burn too small to withdraw anything")

        key = (pool.pool_id, holder)
        self.layout.shares[key] = have - shares
        if self.layout.shares[key] == 0:
            self.layout.shares.pop(key, None)
        self.layout.total_supply[pool.pool_id] = supply - shares
        pool.base_reserve -= base_out
        pool.quote_reserve -= quote_out
        if base_out:
            self.vault.transfer(pool.base_asset, self.custody, holder, base_out)
        if quote_out:
            self.vault.transfer(pool.quote_asset, self.custody, holder, quote_out)
        return base_out, quote_out

    def quote_swap(self, pool_id: int, asset_in: str, amount_in: int) -> SwapQuote:
        pool = self.get(pool_id)
        if asset_in == pool.base_asset:
            asset_out = pool.quote_asset
            reserve_in, reserve_out = pool.base_reserve, pool.quote_reserve
            v_in, v_out = pool.virtual_base, pool.virtual_quote
            oracle = pool.oracle_price
        elif asset_in == pool.quote_asset:
            asset_out = pool.base_asset
            reserve_in, reserve_out = pool.quote_reserve, pool.base_reserve
            v_in, v_out = pool.virtual_quote, pool.virtual_base
            oracle = pmm_math.invert_price(pool.oracle_price)
        else:
            raise InputError(f"{asset_in} is not traded by pool {pool_id}")

        gross = pmm_math.swap_output(amount_in, reserve_in, reserve_out, v_in, v_out, pool.k, oracle)
        fees = self.fee_schedule().compute(gross)
        return SwapQuote(pool_id=pool_id, asset_in=asset_in, amount_in=amount_in,
                         asset_out=asset_out, gross_out=gross, fees=fees)

    def execute_swap(self, trader: Address, q: SwapQuote) -> int:
        pool = self.get(q.pool_id)
        self.vault.transfer(q.asset_in, trader, self.custody, q.amount_in)
        if q.asset_in == pool.base_asset:
            pool.base_reserve += q.amount_in
            pool.quote_reserve -= q.gross_out
        else:
            pool.quote_reserve += q.amount_in
            pool.base_reserve -= q.gross_out

        # fees stay in custody, booked outside the reserves
        fee_key = (pool.pool_id, q.asset_out)
        self.layout.pool_fees[fee_key] = self.layout.pool_fees.get(fee_key, 0) + q.fees.pool_fee
        self.layout.protocol_fees[q.asset_out] = self.layout.protocol_fees.get(q.asset_out, 0) + q.fees.protocol_fee

        if q.amount_out > 0:
            self.vault.transfer(q.asset_out, self.custody, trader, q.amount_out)
        return q.amount_out

    def collect_pool_fees(self, pool_id: int, recipient: Address) -> Tuple[int, int]:
        pool = self.get(pool_id)
        base_fee = self.layout.pool_fees.pop((pool_id, pool.base_asset), 0)
        quote_fee = self.layout.pool_fees.pop((pool_id, pool.quote_asset), 0)
        if base_fee == 0 and quote_fee == 0:
            raise InsufficientFees(f"pool {pool_id} has no fees to collect")
        if base_fee:
            self.vault.transfer(pool.base_asset, self.custody, recipient, base_fee)
        if quote_fee:
            self.vault.transfer(pool.quote_asset, self.custody, recipient, quote_fee)
        return base_fee, quote_fee

    def withdraw_protocol_fees(self, asset: str, amount: int, recipient: Address) -> None:
        if amount <= 0:
            raise ZeroAmount("withdraw amount is zero")
        accrued = self.layout.protocol_fees.get(asset, 0)
        if accrued < amount:
            raise InsufficientFees(f"{accrued} {asset} accrued, {amount} requested")
        self.layout.protocol_fees[asset] = accrued - amount
        self.vault.transfer(asset, self.custody, recipient, amount)


# -----------------------------
# Entry points
# -----------------------------

CREATE_POOL = "createPool(address,address,uint256,uint256,uint256,uint256,uint256,uint256)"
ADD_LIQUIDITY = "addLiquidity(uint256,uint256,uint256)"
REMOVE_LIQUIDITY = "removeLiquidity(uint256,uint256)"
SWAP = "swap(uint256,address,uint256,uint256)"
GET_PRICE = "getPrice(uint256)"
GET_QUOTE = "getQuote(uint256,address,uint256)"
GET_POOL = "getPool(uint256)"
POOL_COUNT = "poolCount()"
GET_POSITION = "getPosition(uint256,address)"
TOTAL_SUPPLY = "totalSupply(uint256)"
POOL_FEES = "poolFees(uint256)"
PROTOCOL_FEES = "protocolFees(address)"
GET_FEE_CONFIG = "getFeeConfig()"
SET_FEE_CONFIG = "setFeeConfig(uint256,uint256)"
SET_ORACLE_PRICE = "setOraclePrice(uint256,uint256)"
SET_SLIPPAGE_COEFFICIENT = "setSlippageCoefficient(uint256,uint256)"
COLLECT_POOL_FEES = "collectPoolFees(uint256,address)"
WITHDRAW_PROTOCOL_FEES = "withdrawProtocolFees(address,uint256,address)"
DEACTIVATE_POOL = "deactivatePool(uint256)"

def _engine(ctx: "CallContext") -> PoolEngine:
    return PoolEngine(ctx.storage, ctx.vault(), ctx.this)

def _require_not_paused(ctx: "CallContext") -> None:
    if collab.is_paused(ctx.storage):
        raise Paused("host is paused")

def _require_tradeable(ctx: "CallContext", pool: Pool) -> None:
    if not pool.active:
        raise PoolInactive(f"pool {pool.pool_id} is deactivated")
    if collab.is_pool_paused(ctx.storage, pool.pool_id):
        raise Paused(f"pool {pool.pool_id} is paused")

def _require_access(ctx: "CallContext") -> None:
    mode = collab.required_mode(ctx.storage)
    if not collab.can_access(ctx.storage, ctx.caller, mode):
        raise AccessDenied(f"{ctx.caller} below required access mode {mode}")


class ExchangeModule(Module):
    """Pool creation, liquidity, swaps and fee management."""

    name = "exchange"

    @entrypoint(CREATE_POOL)
    def create_pool(self, ctx: "CallContext", base_asset: str, quote_asset: str,
                    base_reserve: int, quote_reserve: int, virtual_base: int,
                    virtual_quote: int, k: int, oracle_price: int) -> int:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.POOL_CREATOR_ROLE, ctx.caller)
            _require_not_paused(ctx)
            pool, shares = _engine(ctx).create(
                ctx.caller, base_asset, quote_asset, base_reserve, quote_reserve,
                virtual_base, virtual_quote, k, oracle_price,
            )
        logger.info("pool %d created %s/%s k=%d i=%d", pool.pool_id, base_asset, quote_asset, k, oracle_price)
        ctx.emit("POOL_CREATED", actor_id=ctx.caller, pool_id=pool.pool_id, amount=shares,
                 meta=pool.to_dict())
        return pool.pool_id

    @entrypoint(ADD_LIQUIDITY)
    def add_liquidity(self, ctx: "CallContext", pool_id: int, base_amount: int, quote_amount: int) -> int:
        with nonreentrant(ctx.storage):
            _require_not_paused(ctx)
            _require_access(ctx)
            engine = _engine(ctx)
            pool = engine.get(pool_id)
            _require_tradeable(ctx, pool)
            shares = engine.deposit(pool, ctx.caller, base_amount, quote_amount)
        ctx.emit("LIQUIDITY_ADDED", actor_id=ctx.caller, pool_id=pool_id, amount=shares,
                 meta={"base": base_amount, "quote": quote_amount})
        return shares

    @entrypoint(REMOVE_LIQUIDITY)
    def remove_liquidity(self, ctx: "CallContext", pool_id: int, shares: int) -> Tuple[int, int]:
        with nonreentrant(ctx.storage):
            _require_not_paused(ctx)
            engine = _engine(ctx)
            base_out, quote_out = engine.withdraw(engine.get(pool_id), ctx.caller, shares)
        ctx.emit("LIQUIDITY_REMOVED", actor_id=ctx.caller, pool_id=pool_id, amount=shares,
                 meta={"base": base_out, "quote": quote_out})
        return base_out, quote_out

    @entrypoint(SWAP)
    def swap(self, ctx: "CallContext", pool_id: int, asset_in: str, amount_in: int, min_amount_out: int) -> int:
        with nonreentrant(ctx.storage):
            _require_not_paused(ctx)
            _require_access(ctx)
            if min_amount_out < 0:
                raise InputError(f"minimum out is negative: {min_amount_out}")
            if not collab.check_circuit_breaker(ctx.storage, pool_id, amount_in):
                raise CircuitBreakerTripped(f"pool {pool_id} rejects {amount_in} in one swap")
            engine = _engine(ctx)
            _require_tradeable(ctx, engine.get(pool_id))
            q = engine.quote_swap(pool_id, asset_in, amount_in)
            if q.amount_out < min_amount_out:
                raise SlippageExceeded(f"out {q.amount_out} below minimum {min_amount_out}")
            amount_out = engine.execute_swap(ctx.caller, q)
        logger.debug("swap pool=%d %s %d -> %s %d (fee %d)", pool_id, asset_in, amount_in,
                     q.asset_out, amount_out, q.fees.total_fee)
        ctx.emit("SWAP", actor_id=ctx.caller, pool_id=pool_id, asset_id=asset_in, amount=amount_in,
                 meta=q.to_dict())
        return amount_out

    @entrypoint(GET_PRICE, view=True)
    def get_price(self, ctx: "CallContext", pool_id: int) -> int:
        return _engine(ctx).price(pool_id)

    @entrypoint(GET_QUOTE, view=True)
    def get_quote(self, ctx: "CallContext", pool_id: int, asset_in: str, amount_in: int) -> int:
        return _engine(ctx).quote_swap(pool_id, asset_in, amount_in).amount_out

    @entrypoint(GET_POOL, view=True)
    def get_pool(self, ctx: "CallContext", pool_id: int) -> Pool:
        return replace(_engine(ctx).get(pool_id))

    @entrypoint(POOL_COUNT, view=True)
    def pool_count(self, ctx: "CallContext") -> int:
        return _engine(ctx).layout.pool_count

    @entrypoint(GET_POSITION, view=True)
    def get_position(self, ctx: "CallContext", pool_id: int, holder: Address) -> int:
        return _engine(ctx).shares_of(pool_id, holder)

    @entrypoint(TOTAL_SUPPLY, view=True)
    def total_supply(self, ctx: "CallContext", pool_id: int) -> int:
        return int(_engine(ctx).layout.total_supply.get(pool_id, 0))

    @entrypoint(POOL_FEES, view=True)
    def pool_fees(self, ctx: "CallContext", pool_id: int) -> Tuple[int, int]:
        engine = _engine(ctx)
        pool = engine.get(pool_id)
        fees = engine.layout.pool_fees
        return fees.get((pool_id, pool.base_asset), 0), fees.get((pool_id, pool.quote_asset), 0)

    @entrypoint(PROTOCOL_FEES, view=True)
    def protocol_fees(self, ctx: "CallContext", asset: str) -> int:
        return int(_engine(ctx).layout.protocol_fees.get(asset, 0))

    @entrypoint(GET_FEE_CONFIG, view=True)
    def get_fee_config(self, ctx: "CallContext") -> Tuple[int, int]:
        layout = _engine(ctx).layout
        return layout.fee_bps, layout.protocol_share_bps

    @entrypoint(SET_FEE_CONFIG)
    def set_fee_config(self, ctx: "CallContext", fee_bps: int, protocol_share_bps: int) -> None:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.FEE_MANAGER_ROLE, ctx.caller)
            if not (0 <= fee_bps <= BPS and 0 <= protocol_share_bps <= BPS):
                raise InputError("fee ratios must be within [0, 10000] bps")
            layout = _engine(ctx).layout
            layout.fee_bps = int(fee_bps)
            layout.protocol_share_bps = int(protocol_share_bps)
        ctx.emit("FEE_CONFIG_SET", actor_id=ctx.caller,
                 meta={"fee_bps": fee_bps, "protocol_share_bps": protocol_share_bps})

    @entrypoint(SET_ORACLE_PRICE)
    def set_oracle_price(self, ctx: "CallContext", pool_id: int, oracle_price: int) -> None:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.ORACLE_ROLE, ctx.caller)
            if oracle_price <= 0:
                raise InputError("oracle price must be positive")
            pool = _engine(ctx).get(pool_id)
            if not pool.active:
                raise PoolInactive(f"pool {pool_id} is deactivated")
            previous = pool.oracle_price
            pool.oracle_price = int(oracle_price)
        ctx.emit("ORACLE_PRICE_SET", actor_id=ctx.caller, pool_id=pool_id, amount=int(oracle_price),
                 meta={"previous": previous})

    @entrypoint(SET_SLIPPAGE_COEFFICIENT)
    def set_slippage_coefficient(self, ctx: "CallContext", pool_id: int, k: int) -> None:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.POOL_ADMIN_ROLE, ctx.caller)
            if k < 0 or k > ONE:
                raise CoefficientOutOfRange(f"k={k} outside [0, 1e18]")
            pool = _engine(ctx).get(pool_id)
            if not pool.active:
                raise PoolInactive(f"pool {pool_id} is deactivated")
            pool.k = int(k)
        ctx.emit("SLIPPAGE_COEFFICIENT_SET", actor_id=ctx.caller, pool_id=pool_id, amount=int(k))

    @entrypoint(COLLECT_POOL_FEES)
    def collect_pool_fees(self, ctx: "CallContext", pool_id: int, recipient: Address) -> Tuple[int, int]:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.FEE_MANAGER_ROLE, ctx.caller)
            require_address(recipient, "recipient")
            base_fee, quote_fee = _engine(ctx).collect_pool_fees(pool_id, recipient)
        ctx.emit("FEES_COLLECTED", actor_id=ctx.caller, pool_id=pool_id,
                 meta={"recipient": recipient, "base": base_fee, "quote": quote_fee})
        return base_fee, quote_fee

    @entrypoint(WITHDRAW_PROTOCOL_FEES)
    def withdraw_protocol_fees(self, ctx: "CallContext", asset: str, amount: int, recipient: Address) -> None:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.FEE_MANAGER_ROLE, ctx.caller)
            require_address(recipient, "recipient")
            _engine(ctx).withdraw_protocol_fees(asset, amount, recipient)
        ctx.emit("FEES_COLLECTED", actor_id=ctx.caller, asset_id=asset, amount=amount,
                 meta={"recipient": recipient, "protocol": True})

    @entrypoint(DEACTIVATE_POOL)
    def deactivate_pool(self, ctx: "CallContext", pool_id: int) -> None:
        with nonreentrant(ctx.storage):
            collab.require_role(ctx.storage, collab.SECURITY_ROLE, ctx.caller)
            pool = _engine(ctx).get(pool_id)
            if not pool.active:
                raise PoolInactive(f"pool {pool_id} is already deactivated")
            pool.active = False
        logger.info("pool %d deactivated by %s", pool_id, ctx.caller)
        ctx.emit("POOL_DEACTIVATED", actor_id=ctx.caller, pool_id=pool_id)
