from dataclasses import dataclass, field

ONE = 10**18          # 1.0 in 1e18 fixed point
BPS = 10_000          # 100% in basis points

@dataclass
class HostConfig:
    # Fees (basis points)
    fee_bps: int = 30                    # 0.30% of gross output
    protocol_fee_share_bps: int = 2_000  # 20% of each fee to the protocol pool

    # Gating
    required_access_mode: int = 0        # 0 = open, see compliance.AccessMode
    circuit_breaker_max_value: int | None = None  # default per-pool swap cap (None = off)

    # Events
    event_log_maxlen: int | None = 10_000

    # Debug
    debug_balances: bool = False

    def __post_init__(self) -> None:
        self.fee_bps = int(min(max(self.fee_bps, 0), BPS))
        self.protocol_fee_share_bps = int(min(max(self.protocol_fee_share_bps, 0), BPS))
        self.required_access_mode = max(0, int(self.required_access_mode))


@dataclass
class ScenarioConfig:
    host: HostConfig = field(default_factory=HostConfig)

    # Network
    initial_pools: int = 4
    base_assets: list[str] = field(default_factory=lambda: ["WETH", "WBTC", "LINK", "UNI"])
    quote_asset: str = "USDC"
    oracle_prices: list[float] = field(default_factory=lambda: [2000.0, 30000.0, 15.0, 6.0])

    # Reserves (in whole quote units; base reserve follows from the oracle price)
    initial_quote_reserve_mean: float = 1_000_000.0
    virtual_reserve_multiplier: float = 1.0
    slippage_k: float = 0.5                 # as a fraction of 1.0

    # Agents
    traders: int = 20
    liquidity_providers: int = 3
    trader_funding_quote: float = 250_000.0

    # Activity per tick
    swaps_per_tick: int = 8
    swap_size_mean_frac: float = 0.005      # share of the quote reserve per swap
    swap_size_sigma: float = 1.0            # lognormal sigma
    slippage_tolerance_bps: int = 100
    p_liquidity_event: float = 0.10
    p_remove_liquidity: float = 0.35

    # Oracle
    oracle_drift_sigma: float = 0.01        # per tick, lognormal

    # Metrics
    metrics_stride: int = 1

    def __post_init__(self) -> None:
        n = min(len(self.base_assets), len(self.oracle_prices))
        self.base_assets = list(self.base_assets[:n])
        self.oracle_prices = list(self.oracle_prices[:n])
        self.initial_pools = max(0, min(int(self.initial_pools), n))
        self.slippage_k = min(max(float(self.slippage_k), 0.0), 1.0)
        self.metrics_stride = max(1, int(self.metrics_stride))
