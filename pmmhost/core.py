from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Tuple, Optional, List
from collections import deque
import hashlib
import logging

logger = logging.getLogger(__name__)

from .config import BPS
from .errors import InsufficientBalance, ZeroAddress, ZeroAmount
from .storage import StorageSpace, declare_region

Address = str
NULL_ADDRESS: Address = "0x" + "0" * 40

def make_address(label: str) -> Address:
    """Deterministic address for a human label (deployments, test accounts)."""
    return "0x" + hashlib.sha3_256(label.encode("utf-8")).hexdigest()[-40:]

def require_address(addr: Address, what: str = "address") -> None:
    if not addr or addr == NULL_ADDRESS:
        raise ZeroAddress(f"{what} is the zero address")

def format_balances(bal: Dict[str, int]) -> str:
    if not bal:
        return "(empty)"
    items = sorted(bal.items(), key=lambda kv: kv[0])
    return ", ".join(f"{asset}:{amount}" for asset, amount in items)

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    seq: int
    event_type: str
    actor_id: Optional[str] = None
    pool_id: Optional[int] = None
    asset_id: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)

    def add(self, e: Event) -> None:
        self.events.append(e)

    def extend(self, events: List[Event]) -> None:
        self.events.extend(events)

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]


# -----------------------------
# Fees
# -----------------------------
@dataclass
class FeeBreakdown:
    pool_fee: int
    protocol_fee: int
    total_fee: int

    def to_dict(self) -> dict:
        return {
            "pool_fee": int(self.pool_fee),
            "protocol_fee": int(self.protocol_fee),
            "total_fee": int(self.total_fee),
        }

class FeeSchedule:
    def __init__(self, fee_bps: int, protocol_share_bps: int) -> None:
        self.fee_bps = int(fee_bps)
        self.protocol_share_bps = int(protocol_share_bps)

    def compute(self, gross_out: int) -> FeeBreakdown:
        total_fee = gross_out * self.fee_bps // BPS
        protocol_fee = total_fee * self.protocol_share_bps // BPS
        pool_fee = total_fee - protocol_fee
        return FeeBreakdown(pool_fee=pool_fee, protocol_fee=protocol_fee, total_fee=total_fee)


# -----------------------------
# Asset ledger
# -----------------------------
@dataclass
class LedgerLayout:
    balances: Dict[Tuple[str, Address], int] = field(default_factory=dict)  # (asset, account) -> amount
    supply: Dict[str, int] = field(default_factory=dict)

LEDGER = declare_region("pmmhost.assets.ledger", LedgerLayout)

class Vault:
    """Balances of every account, read and written through the shared storage."""

    def __init__(self, storage: StorageSpace, debug: bool = False) -> None:
        self.layout = LEDGER.load(storage)
        self.debug = debug

    def get(self, asset_id: str, account: Address) -> int:
        return int(self.layout.balances.get((asset_id, account), 0))

    def holdings(self, account: Address) -> Dict[str, int]:
        return {a: amt for (a, acct), amt in self.layout.balances.items() if acct == account and amt > 0}

    def mint(self, asset_id: str, account: Address, amount: int) -> None:
        require_address(account, "recipient")
        self._add(asset_id, account, amount)
        self.layout.supply[asset_id] = self.layout.supply.get(asset_id, 0) + int(amount)

    def transfer(self, asset_id: str, src: Address, dst: Address, amount: int) -> None:
        require_address(dst, "recipient")
        if amount <= 0:
            raise ZeroAmount(f"{asset_id} amount must be positive, got {amount}")
        debug = self.debug and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = {src: self.holdings(src), dst: self.holdings(dst)}
        self._sub(asset_id, src, amount)
        self._add(asset_id, dst, amount)
        if debug:
            logger.debug(
                "[STORE] transfer asset=%s amount=%d src=%s { %s } -> { %s } dst=%s { %s } -> { %s }",
                asset_id,
                amount,
                src,
                format_balances(before[src]),
                format_balances(self.holdings(src)),
                dst,
                format_balances(before[dst]),
                format_balances(self.holdings(dst)),
            )

    def _add(self, asset_id: str, account: Address, amount: int) -> None:
        if amount <= 0:
            raise ZeroAmount(f"{asset_id} amount must be positive, got {amount}")
        key = (asset_id, account)
        self.layout.balances[key] = self.layout.balances.get(key, 0) + int(amount)

    def _sub(self, asset_id: str, account: Address, amount: int) -> None:
        have = self.get(asset_id, account)
        if have < amount:
            raise InsufficientBalance(f"{account} holds {have} {asset_id}, needs {amount}")
        key = (asset_id, account)
        self.layout.balances[key] = have - int(amount)
        if self.layout.balances[key] == 0:
            self.layout.balances.pop(key, None)
