import json
import time
import numpy as np
import streamlit as st
import pandas as pd

from pmmhost.config import ONE, ScenarioConfig
from pmmhost.cut import remove
from pmmhost.engine import SimulationEngine
from pmmhost.errors import HostError
from pmmhost.factory import list_signatures
from pmmhost.host import APPLY_CUT
from pmmhost.pool import DEACTIVATE_POOL, GET_QUOTE

st.set_page_config(page_title="PMM Host Simulator", layout="wide")


def get_engine() -> SimulationEngine:
    if "engine" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.seed = 1
        st.session_state.engine = SimulationEngine(cfg=cfg, seed=st.session_state.seed)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        cfg = ScenarioConfig()
        seed = 1
        st.session_state.cfg = cfg
        st.session_state.seed = seed
    else:
        cfg = st.session_state.get("cfg", ScenarioConfig())
        seed = st.session_state.get("seed", 1)
    st.session_state.engine = SimulationEngine(cfg=cfg, seed=seed)


engine = get_engine()

st.title("PMM Host Simulator")
st.caption("Modules routed through one dispatch registry; pools priced on a proportional market maker curve.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _fmt(value: float) -> str:
    return f"{float(value):,.2f}"

def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_table_numbers(df: pd.DataFrame) -> pd.DataFrame:
    formatted = df.copy()
    numeric_cols = formatted.select_dtypes(include=["number"]).columns
    if len(numeric_cols) == 0:
        return formatted
    formatted[numeric_cols] = formatted[numeric_cols].apply(
        lambda col: col.map(lambda value: f"{value:,.4f}" if pd.notnull(value) else "")
    )
    return formatted

def _format_event_meta(meta) -> str:
    if meta is None:
        return ""
    if isinstance(meta, str):
        return meta
    try:
        return json.dumps(meta, sort_keys=True, default=str)
    except TypeError:
        return str(meta)

def _events_df(events) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "seq": e.seq,
            "event": e.event_type,
            "actor": e.actor_id or "",
            "pool": e.pool_id if e.pool_id is not None else "",
            "asset": e.asset_id or "",
            "amount": "" if e.amount is None else str(e.amount),
            "meta": _format_event_meta(e.meta),
        }
        for e in events
    ])

def _quote_curve(engine: SimulationEngine, pool_id: int, asset_in: str, max_frac: float, points: int = 40) -> pd.DataFrame:
    pool = engine.pool(pool_id)
    if pool is None:
        return pd.DataFrame()
    reserve = pool.base_reserve if asset_in == pool.base_asset else pool.quote_reserve
    sizes = np.linspace(max_frac / points, max_frac, points) * max(reserve, 1)
    rows = []
    for size in sizes:
        amount_in = int(size)
        if amount_in <= 0:
            continue
        try:
            out = engine.host.call(engine.owner, GET_QUOTE, pool_id, asset_in, amount_in)
        except HostError as exc:
            rows.append({"amount_in": amount_in / ONE, "amount_out": np.nan, "rate": np.nan, "status": exc.reason})
            continue
        rows.append({"amount_in": amount_in / ONE, "amount_out": out / ONE, "rate": out / amount_in, "status": "ok"})
    return pd.DataFrame(rows)


with st.sidebar:
    st.header("Run")
    n_ticks = st.number_input("Ticks per run", min_value=1, max_value=1000, value=10, step=1)
    if st.button("Step"):
        t0 = time.time()
        engine.step(int(n_ticks))
        st.session_state.last_run = time.time() - t0
    if "last_run" in st.session_state:
        st.caption(f"Last run: {_fmt_duration(st.session_state.last_run)}")

    st.header("Scenario")
    cfg = st.session_state.cfg
    cfg.swaps_per_tick = int(st.number_input("Swaps per tick", 0, 500, cfg.swaps_per_tick))
    cfg.swap_size_mean_frac = float(st.number_input("Swap size (share of quote reserve)", 0.0, 0.5,
                                                    cfg.swap_size_mean_frac, format="%.4f"))
    cfg.oracle_drift_sigma = float(st.number_input("Oracle drift sigma", 0.0, 0.5, cfg.oracle_drift_sigma, format="%.4f"))
    cfg.p_liquidity_event = float(st.slider("Liquidity event probability", 0.0, 1.0, cfg.p_liquidity_event))
    seed = st.number_input("Seed", min_value=0, value=int(st.session_state.seed), step=1)
    if st.button("Reset"):
        st.session_state.seed = int(seed)
        reset_engine()
        st.rerun()
    if st.button("Reset to defaults"):
        reset_engine(reset_config=True)
        st.rerun()

net_df = engine.metrics.network_df()
pool_df = engine.metrics.pool_df()

tab_overview, tab_pools, tab_curve, tab_registry, tab_events = st.tabs(
    ["Overview", "Pools", "Quote curve", "Registry", "Events"]
)

with tab_overview:
    last = net_df.iloc[-1] if not net_df.empty else None
    kpis = [
        ("Tick", str(engine.tick)),
        ("Pools", str(len(engine.pool_ids))),
        ("TVL (quote)", _fmt(last["tvl_quote"]) if last is not None else "-"),
        ("Protocol fees (quote)", _fmt(last["protocol_fees_quote"]) if last is not None else "-"),
        ("Host events", str(len(engine.host.log.events))),
    ]
    _render_kpi_grid(kpis)
    if not net_df.empty:
        st.line_chart(net_df.set_index("tick")[["tvl_quote"]])
        st.bar_chart(net_df.set_index("tick")[["swaps", "failures"]])
    st.subheader("Failures by reason")
    st.dataframe(engine.metrics.failures_df(), use_container_width=True)

with tab_pools:
    if pool_df.empty:
        st.info("No pool snapshots yet.")
    else:
        latest = pool_df[pool_df["tick"] == pool_df["tick"].max()]
        st.dataframe(_format_table_numbers(latest.drop(columns=["tick"])), use_container_width=True)
        pivot = pool_df.pivot_table(index="tick", columns="pair", values="price")
        st.subheader("PMM price")
        st.line_chart(pivot)
        pivot = pool_df.pivot_table(index="tick", columns="pair", values="oracle_price")
        st.subheader("Oracle price")
        st.line_chart(pivot)

    st.subheader("Deactivate a pool")
    target = st.selectbox("Pool", engine.pool_ids, key="deactivate_pool")
    if st.button("Deactivate"):
        try:
            engine.host.call(engine.owner, DEACTIVATE_POOL, int(target))
            st.success(f"Pool {target} deactivated")
        except HostError as exc:
            st.error(f"{exc.reason}: {exc}")

with tab_curve:
    if not engine.pool_ids:
        st.info("No pools.")
    else:
        pool_id = st.selectbox("Pool", engine.pool_ids, key="curve_pool")
        pool = engine.pool(int(pool_id))
        if pool is None:
            st.warning("Pool reads are not routed on this host.")
        else:
            asset_in = st.radio("Sell", [pool.base_asset, pool.quote_asset], horizontal=True)
            max_frac = st.slider("Max trade (share of input reserve)", 0.01, 5.0, 1.0)
            curve = _quote_curve(engine, int(pool_id), asset_in, max_frac)
            if not curve.empty:
                st.line_chart(curve.set_index("amount_in")[["rate"]])
                st.dataframe(_format_table_numbers(curve), use_container_width=True)

with tab_registry:
    sig_df = pd.DataFrame(list_signatures(engine.host))
    st.dataframe(sig_df, use_container_width=True)
    removable = sig_df[sig_df["address"] != engine.host.address] if not sig_df.empty else sig_df
    if not removable.empty:
        st.subheader("Remove a route")
        sig = st.selectbox("Entry point", removable["signature"].tolist())
        if st.button("Apply cut"):
            fid = bytes.fromhex(removable[removable["signature"] == sig]["function_id"].iloc[0][2:])
            try:
                engine.host.call(engine.owner, APPLY_CUT, [remove(fid)])
                st.success(f"{sig} removed")
            except HostError as exc:
                st.error(f"{exc.reason}: {exc}")

with tab_events:
    n = st.number_input("Show last N events", min_value=10, max_value=5000, value=200, step=10)
    st.dataframe(_events_df(engine.host.log.tail(int(n))), use_container_width=True)
