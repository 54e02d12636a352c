from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging
import math
import numpy as np
import random

from .assets import BALANCE_OF
from .config import ONE, BPS, ScenarioConfig
from .core import Address, Event, EventLog
from .errors import HostError
from .factory import Agent, Deployment, HostFactory, to_fixed
from .metrics import MetricsStore
from .pool import (
    ADD_LIQUIDITY,
    GET_POOL,
    GET_POSITION,
    GET_PRICE,
    GET_QUOTE,
    POOL_COUNT,
    POOL_FEES,
    PROTOCOL_FEES,
    REMOVE_LIQUIDITY,
    SET_ORACLE_PRICE,
    SWAP,
    TOTAL_SUPPLY,
    Pool,
)

logger = logging.getLogger(__name__)


class SimulationEngine:
    """Random trader flow against a host with the standard modules."""

    def __init__(self, cfg: ScenarioConfig, seed: int = 1) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        np.random.seed(seed)

        self.tick: int = 0
        self.log = EventLog(maxlen=cfg.host.event_log_maxlen)
        self.metrics = MetricsStore()

        self.factory = HostFactory(cfg.host)
        self.dep: Deployment = self.factory.deploy()
        self.host = self.dep.host
        self.owner: Address = self.dep.owner

        self.agents: Dict[str, Agent] = {}
        self.pool_ids: List[int] = []
        self._swaps_tick: int = 0
        self._swap_volume_quote_tick: float = 0.0
        self._failures_tick: int = 0

        self._bootstrap()

    def _bootstrap(self) -> None:
        cfg = self.cfg
        for asset, px in zip(cfg.base_assets[:cfg.initial_pools], cfg.oracle_prices[:cfg.initial_pools]):
            self.add_pool(asset, px)

        budget = to_fixed(cfg.trader_funding_quote)
        for _ in range(cfg.traders):
            agent = self._new_agent("trader")
            balances = {cfg.quote_asset: budget}
            for asset, px in zip(cfg.base_assets, cfg.oracle_prices):
                balances[asset] = to_fixed(cfg.trader_funding_quote / px)
            self.factory.fund(self.dep, agent.address, balances)
        for _ in range(cfg.liquidity_providers):
            agent = self._new_agent("liquidity_provider")
            balances = {cfg.quote_asset: budget * 4}
            for asset, px in zip(cfg.base_assets, cfg.oracle_prices):
                balances[asset] = to_fixed(4 * cfg.trader_funding_quote / px)
            self.factory.fund(self.dep, agent.address, balances)

        self.log.add(Event(self.tick, "BOOTSTRAPPED", meta={"pools": len(self.pool_ids), "agents": len(self.agents)}))
        self.snapshot_metrics()

    def _new_agent(self, role) -> Agent:
        agent = self.factory.new_agent(role)
        self.agents[agent.agent_id] = agent
        return agent

    def add_pool(self, base_asset: str, oracle_price: float) -> int:
        cfg = self.cfg
        quote_reserve = max(1.0, float(np.random.exponential(cfg.initial_quote_reserve_mean)))
        base_reserve = quote_reserve / oracle_price
        mult = max(cfg.virtual_reserve_multiplier, 1e-9)
        pool_id = self.factory.create_funded_pool(
            self.dep,
            base_asset,
            cfg.quote_asset,
            to_fixed(base_reserve),
            to_fixed(quote_reserve),
            k=to_fixed(cfg.slippage_k),
            oracle_price=to_fixed(oracle_price),
            virtual_base=to_fixed(base_reserve * mult),
            virtual_quote=to_fixed(quote_reserve * mult),
        )
        self.pool_ids.append(pool_id)
        self.log.add(Event(self.tick, "POOL_ADDED", pool_id=pool_id, asset_id=base_asset))
        return pool_id

    def pool(self, pool_id: int) -> Optional[Pool]:
        return self._try(self.owner, GET_POOL, pool_id)

    # ---- activity ----
    def _try(self, caller: Address, signature: str, *args: Any, default: Any = None) -> Any:
        """Call the host, counting a failure instead of raising. Routes can be cut at any time."""
        try:
            return self.host.call(caller, signature, *args)
        except HostError as exc:
            self._failures_tick += 1
            self.metrics.record_failure(exc.reason)
            logger.debug("[SIM] %s %s failed: %s", caller, signature.split("(")[0], exc)
            return default

    def _random_swap(self, trader: Agent) -> None:
        cfg = self.cfg
        pool_id = self.rng.choice(self.pool_ids)
        pool = self.pool(pool_id)
        if pool is None or not pool.active:
            return
        sell_base = self.rng.random() < 0.5
        size_quote = pool.quote_reserve / ONE * cfg.swap_size_mean_frac
        size_quote *= float(np.random.lognormal(mean=-0.5 * cfg.swap_size_sigma ** 2, sigma=cfg.swap_size_sigma))
        if size_quote <= 0:
            return
        if sell_base:
            asset_in = pool.base_asset
            amount_in = to_fixed(size_quote * ONE / pool.oracle_price)
        else:
            asset_in = pool.quote_asset
            amount_in = to_fixed(size_quote)
        if amount_in <= 0:
            return
        expected = self._try(trader.address, GET_QUOTE, pool_id, asset_in, amount_in)
        if expected is None:
            return
        min_out = expected * (BPS - cfg.slippage_tolerance_bps) // BPS
        out = self._try(trader.address, SWAP, pool_id, asset_in, amount_in, min_out)
        if out is not None:
            self._swaps_tick += 1
            self._swap_volume_quote_tick += size_quote

    def _random_liquidity(self, lp: Agent) -> None:
        pool_id = self.rng.choice(self.pool_ids)
        pool = self.pool(pool_id)
        if pool is None or not pool.active:
            return
        held = self._try(lp.address, GET_POSITION, pool_id, lp.address, default=0)
        if held > 0 and self.rng.random() < self.cfg.p_remove_liquidity:
            burn = max(1, int(held * self.rng.uniform(0.1, 0.5)))
            self._try(lp.address, REMOVE_LIQUIDITY, pool_id, burn)
            return
        frac = self.rng.uniform(0.005, 0.02)
        base_amount = int(pool.base_reserve * frac)
        quote_amount = int(pool.quote_reserve * frac)
        have_base = self._try(lp.address, BALANCE_OF, pool.base_asset, lp.address, default=0)
        have_quote = self._try(lp.address, BALANCE_OF, pool.quote_asset, lp.address, default=0)
        scale = min(1.0, have_base / base_amount if base_amount else 0.0,
                    have_quote / quote_amount if quote_amount else 0.0)
        if scale <= 0:
            return
        self._try(lp.address, ADD_LIQUIDITY, pool_id, int(base_amount * scale), int(quote_amount * scale))

    def _drift_oracles(self) -> None:
        sigma = self.cfg.oracle_drift_sigma
        if sigma <= 0:
            return
        for pool_id in self.pool_ids:
            pool = self.pool(pool_id)
            if pool is None or not pool.active:
                continue
            shock = float(np.random.normal(0.0, sigma))
            new_price = max(1, int(pool.oracle_price * math.exp(shock)))
            self._try(self.owner, SET_ORACLE_PRICE, pool_id, new_price)

    def step(self, n_ticks: int = 1) -> None:
        traders = [a for a in self.agents.values() if a.role == "trader"]
        lps = [a for a in self.agents.values() if a.role == "liquidity_provider"]
        for _ in range(n_ticks):
            self.tick += 1
            self._swaps_tick = 0
            self._swap_volume_quote_tick = 0.0
            self._failures_tick = 0

            self._drift_oracles()
            if traders and self.pool_ids:
                for _ in range(self.cfg.swaps_per_tick):
                    self._random_swap(self.rng.choice(traders))
            if lps and self.pool_ids and self.rng.random() < self.cfg.p_liquidity_event:
                self._random_liquidity(self.rng.choice(lps))

            self.log.add(Event(self.tick, "TICK", amount=self._swaps_tick,
                               meta={"failures": self._failures_tick}))
            if self.tick % self.cfg.metrics_stride == 0:
                self.snapshot_metrics()

    def snapshot_metrics(self) -> None:
        quote = self.cfg.quote_asset
        rows = []
        tvl = 0.0
        for pool_id in self.pool_ids:
            pool = self.pool(pool_id)
            if pool is None:
                continue
            fees_base, fees_quote = self._try(self.owner, POOL_FEES, pool_id, default=(0, 0))
            value = pool.quote_reserve / ONE + (pool.base_reserve / ONE) * (pool.oracle_price / ONE)
            tvl += value
            rows.append({
                "tick": self.tick,
                "pool_id": pool_id,
                "pair": f"{pool.base_asset}/{pool.quote_asset}",
                "active": pool.active,
                "price": self._try(self.owner, GET_PRICE, pool_id),
                "oracle_price": pool.oracle_price,
                "base_reserve": pool.base_reserve / ONE,
                "quote_reserve": pool.quote_reserve / ONE,
                "total_supply": self._try(self.owner, TOTAL_SUPPLY, pool_id, default=0) / ONE,
                "pool_fees_base": fees_base / ONE,
                "pool_fees_quote": fees_quote / ONE,
                "value_quote": value,
            })
        self.metrics.add_pool_rows(rows)
        pools = self._try(self.owner, POOL_COUNT, default=len(self.pool_ids))
        protocol_fees = self._try(self.owner, PROTOCOL_FEES, quote, default=0)
        self.metrics.add_network({
            "tick": self.tick,
            "pools": pools,
            "tvl_quote": tvl,
            "swaps": self._swaps_tick,
            "swap_volume_quote": self._swap_volume_quote_tick,
            "failures": self._failures_tick,
            "protocol_fees_quote": protocol_fees / ONE,
            "host_events": len(self.host.log.events),
        })
