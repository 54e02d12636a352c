from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional
import logging

from . import collaborators as collab
from .assets import MINT, AssetModule
from .config import HostConfig, ONE
from .core import Address, make_address
from .cut import add
from .host import APPLY_CUT, Host
from .modules import Module, encode_call, entrypoint
from .pool import CREATE_POOL, EXCHANGE, ExchangeModule

logger = logging.getLogger(__name__)

AgentRole = Literal["admin", "trader", "liquidity_provider", "oracle"]

INITIALIZE = "initialize(address,uint256,uint256,uint8,uint256)"

ADMIN_ROLES = (
    collab.DEFAULT_ADMIN_ROLE,
    collab.POOL_CREATOR_ROLE,
    collab.POOL_ADMIN_ROLE,
    collab.ORACLE_ROLE,
    collab.FEE_MANAGER_ROLE,
    collab.SECURITY_ROLE,
    collab.COMPLIANCE_ROLE,
    collab.MINTER_ROLE,
)


class HostInit(Module):
    """Seeds the exchange and collaborator regions in the same step that routes them."""

    name = "host_init"

    @entrypoint(INITIALIZE)
    def initialize(self, ctx, admin: Address, fee_bps: int, protocol_share_bps: int,
                   required_mode: int, breaker_limit: int) -> None:
        for role in ADMIN_ROLES:
            collab.grant_role(ctx.storage, role, admin)
        exchange = EXCHANGE.load(ctx.storage)
        exchange.fee_bps = int(fee_bps)
        exchange.protocol_share_bps = int(protocol_share_bps)
        collab.COMPLIANCE.load(ctx.storage).required_mode = int(required_mode)
        collab.SECURITY.load(ctx.storage).default_breaker_limit = int(breaker_limit) or None
        ctx.emit("HOST_INITIALIZED", actor_id=ctx.caller,
                 meta={"admin": admin, "fee_bps": fee_bps, "protocol_share_bps": protocol_share_bps})


@dataclass
class Agent:
    agent_id: str
    address: Address
    role: AgentRole


@dataclass
class Deployment:
    host: Host
    owner: Address
    modules: Dict[str, Address]


class HostFactory:
    STANDARD_MODULES = (AssetModule, collab.AccessControlModule, collab.SecurityModule,
                        collab.ComplianceModule, ExchangeModule)

    def __init__(self, cfg: Optional[HostConfig] = None) -> None:
        self.cfg = cfg or HostConfig()
        self.agent_counter = 0

    def _new_agent_id(self) -> str:
        self.agent_counter += 1
        return f"agent_{self.agent_counter:04d}"

    def new_agent(self, role: AgentRole) -> Agent:
        agent_id = self._new_agent_id()
        return Agent(agent_id=agent_id, address=make_address(agent_id), role=role)

    def deploy(self, owner: Optional[Address] = None, label: str = "pmmhost") -> Deployment:
        """A host with the standard modules routed and seeded by one cut."""
        owner = owner or make_address(f"{label}:owner")
        host = Host(owner=owner, cfg=self.cfg, label=label)

        modules: Dict[str, Address] = {}
        cuts = []
        for cls in self.STANDARD_MODULES:
            module = cls()
            addr = host.deploy(module, label=f"{label}:{module.name}")
            modules[module.name] = addr
            cuts.append(add(addr, *module.function_ids()))

        init_addr = host.deploy(HostInit(), label=f"{label}:host_init")
        payload = encode_call(
            INITIALIZE,
            owner,
            self.cfg.fee_bps,
            self.cfg.protocol_fee_share_bps,
            self.cfg.required_access_mode,
            self.cfg.circuit_breaker_max_value or 0,
        )
        host.call(owner, APPLY_CUT, cuts, init_addr, payload)
        logger.info("host %s deployed with %d module(s)", host.address, len(modules))
        return Deployment(host=host, owner=owner, modules=modules)

    def fund(self, dep: Deployment, account: Address, balances: Dict[str, int]) -> None:
        for asset, amount in balances.items():
            if amount > 0:
                dep.host.call(dep.owner, MINT, asset, account, int(amount))

    def create_funded_pool(self, dep: Deployment, base_asset: str, quote_asset: str,
                           base_reserve: int, quote_reserve: int, k: int, oracle_price: int,
                           virtual_base: Optional[int] = None,
                           virtual_quote: Optional[int] = None) -> int:
        """Mint the seed reserves to the owner, then create the pool from them."""
        self.fund(dep, dep.owner, {base_asset: base_reserve, quote_asset: quote_reserve})
        return dep.host.call(
            dep.owner, CREATE_POOL, base_asset, quote_asset, base_reserve, quote_reserve,
            virtual_base or base_reserve, virtual_quote or quote_reserve, k, oracle_price,
        )


def to_fixed(value: float) -> int:
    return int(round(value * ONE))

def from_fixed(value: int) -> float:
    return value / ONE

def list_signatures(host: Host) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    registry = host.registry()
    for addr, fids in registry.modules():
        module = host.code.get(addr)
        for fid in fids:
            rows.append({
                "module": getattr(module, "name", "?"),
                "address": addr,
                "function_id": "0x" + fid.hex(),
                "signature": (module.signature_of(fid) if module else None) or "?",
            })
    return rows
