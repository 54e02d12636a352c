"""
Collaborators consumed by the exchange: role checks, pause switches and
circuit breakers, and compliance gating.

Each keeps its own storage region. The exchange only calls the hook functions
(``is_authorized``, ``is_paused``, ``check_circuit_breaker``, ``can_access``)
and aborts when they answer no.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Dict, Optional, Set
import hashlib
import logging

from .core import Address, require_address
from .errors import InputError, Unauthorized
from .guard import nonreentrant
from .modules import Module, entrypoint
from .storage import StorageSpace, declare_region

if TYPE_CHECKING:
    from .host import CallContext

logger = logging.getLogger(__name__)

Role = bytes

def role_id(name: str) -> Role:
    return hashlib.sha3_256(name.encode("utf-8")).digest()

DEFAULT_ADMIN_ROLE: Role = b"\x00" * 32
POOL_CREATOR_ROLE = role_id("POOL_CREATOR_ROLE")
POOL_ADMIN_ROLE = role_id("POOL_ADMIN_ROLE")
ORACLE_ROLE = role_id("ORACLE_ROLE")
FEE_MANAGER_ROLE = role_id("FEE_MANAGER_ROLE")
SECURITY_ROLE = role_id("SECURITY_ROLE")
COMPLIANCE_ROLE = role_id("COMPLIANCE_ROLE")
MINTER_ROLE = role_id("MINTER_ROLE")

ROLE_NAMES: Dict[Role, str] = {
    DEFAULT_ADMIN_ROLE: "DEFAULT_ADMIN_ROLE",
    POOL_CREATOR_ROLE: "POOL_CREATOR_ROLE",
    POOL_ADMIN_ROLE: "POOL_ADMIN_ROLE",
    ORACLE_ROLE: "ORACLE_ROLE",
    FEE_MANAGER_ROLE: "FEE_MANAGER_ROLE",
    SECURITY_ROLE: "SECURITY_ROLE",
    COMPLIANCE_ROLE: "COMPLIANCE_ROLE",
    MINTER_ROLE: "MINTER_ROLE",
}

def role_name(role: Role) -> str:
    return ROLE_NAMES.get(role, "0x" + role.hex())

HAS_ROLE = "hasRole(bytes32,address)"
GRANT_ROLE = "grantRole(bytes32,address)"
REVOKE_ROLE = "revokeRole(bytes32,address)"
PAUSED = "paused()"
PAUSE = "pause()"
UNPAUSE = "unpause()"
PAUSE_POOL = "pausePool(uint256)"
UNPAUSE_POOL = "unpausePool(uint256)"
SET_CIRCUIT_BREAKER = "setCircuitBreaker(uint256,uint256)"
ACCESS_MODE_OF = "accessModeOf(address)"
SET_ACCESS_MODE = "setAccessMode(address,uint8)"
SET_REQUIRED_MODE = "setRequiredMode(uint8)"


# -----------------------------
# Access control
# -----------------------------
@dataclass
class AccessLayout:
    members: Dict[Role, Set[Address]] = field(default_factory=dict)
    admin_of: Dict[Role, Role] = field(default_factory=dict)

ACCESS = declare_region("pmmhost.collaborators.access", AccessLayout)

def is_authorized(storage: StorageSpace, role: Role, account: Address) -> bool:
    return account in ACCESS.load(storage).members.get(role, set())

def require_role(storage: StorageSpace, role: Role, account: Address) -> None:
    if not is_authorized(storage, role, account):
        raise Unauthorized(f"{account} lacks {role_name(role)}")

def grant_role(storage: StorageSpace, role: Role, account: Address) -> bool:
    require_address(account, "account")
    members = ACCESS.load(storage).members.setdefault(role, set())
    if account in members:
        return False
    members.add(account)
    return True

def revoke_role(storage: StorageSpace, role: Role, account: Address) -> bool:
    members = ACCESS.load(storage).members.get(role, set())
    if account not in members:
        return False
    members.discard(account)
    return True

def admin_role_of(storage: StorageSpace, role: Role) -> Role:
    return ACCESS.load(storage).admin_of.get(role, DEFAULT_ADMIN_ROLE)


class AccessControlModule(Module):
    name = "access_control"

    @entrypoint(HAS_ROLE, view=True)
    def has_role(self, ctx: "CallContext", role: Role, account: Address) -> bool:
        return is_authorized(ctx.storage, role, account)

    @entrypoint(GRANT_ROLE)
    def grant_role(self, ctx: "CallContext", role: Role, account: Address) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, admin_role_of(ctx.storage, role), ctx.caller)
            if grant_role(ctx.storage, role, account):
                ctx.emit("ROLE_GRANTED", actor_id=ctx.caller, meta={"role": role_name(role), "account": account})

    @entrypoint(REVOKE_ROLE)
    def revoke_role(self, ctx: "CallContext", role: Role, account: Address) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, admin_role_of(ctx.storage, role), ctx.caller)
            if revoke_role(ctx.storage, role, account):
                ctx.emit("ROLE_REVOKED", actor_id=ctx.caller, meta={"role": role_name(role), "account": account})


# -----------------------------
# Security: pause switches + circuit breakers
# -----------------------------
@dataclass
class SecurityLayout:
    paused: bool = False
    paused_pools: Set[int] = field(default_factory=set)
    breaker_limits: Dict[int, int] = field(default_factory=dict)  # pool_id -> max value per call
    default_breaker_limit: Optional[int] = None

SECURITY = declare_region("pmmhost.collaborators.security", SecurityLayout)

def is_paused(storage: StorageSpace) -> bool:
    return SECURITY.load(storage).paused

def is_pool_paused(storage: StorageSpace, pool_id: int) -> bool:
    return pool_id in SECURITY.load(storage).paused_pools

def check_circuit_breaker(storage: StorageSpace, pool_id: int, value: int) -> bool:
    sec = SECURITY.load(storage)
    limit = sec.breaker_limits.get(pool_id, sec.default_breaker_limit)
    return limit is None or value <= limit


class SecurityModule(Module):
    name = "security"

    @entrypoint(PAUSED, view=True)
    def paused(self, ctx: "CallContext") -> bool:
        return is_paused(ctx.storage)

    @entrypoint(PAUSE)
    def pause(self, ctx: "CallContext") -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, SECURITY_ROLE, ctx.caller)
            SECURITY.load(ctx.storage).paused = True
        logger.info("host paused by %s", ctx.caller)
        ctx.emit("PAUSED", actor_id=ctx.caller)

    @entrypoint(UNPAUSE)
    def unpause(self, ctx: "CallContext") -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, SECURITY_ROLE, ctx.caller)
            SECURITY.load(ctx.storage).paused = False
        logger.info("host unpaused by %s", ctx.caller)
        ctx.emit("UNPAUSED", actor_id=ctx.caller)

    @entrypoint(PAUSE_POOL)
    def pause_pool(self, ctx: "CallContext", pool_id: int) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, SECURITY_ROLE, ctx.caller)
            SECURITY.load(ctx.storage).paused_pools.add(pool_id)
        ctx.emit("POOL_PAUSED", actor_id=ctx.caller, pool_id=pool_id)

    @entrypoint(UNPAUSE_POOL)
    def unpause_pool(self, ctx: "CallContext", pool_id: int) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, SECURITY_ROLE, ctx.caller)
            SECURITY.load(ctx.storage).paused_pools.discard(pool_id)
        ctx.emit("POOL_UNPAUSED", actor_id=ctx.caller, pool_id=pool_id)

    @entrypoint(SET_CIRCUIT_BREAKER)
    def set_circuit_breaker(self, ctx: "CallContext", pool_id: int, max_value: int) -> None:
        """A zero limit removes the pool's breaker."""
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, SECURITY_ROLE, ctx.caller)
            limits = SECURITY.load(ctx.storage).breaker_limits
            if max_value == 0:
                limits.pop(pool_id, None)
            else:
                limits[pool_id] = int(max_value)
        ctx.emit("CIRCUIT_BREAKER_SET", actor_id=ctx.caller, pool_id=pool_id, amount=int(max_value))


# -----------------------------
# Compliance
# -----------------------------
class AccessMode(IntEnum):
    OPEN = 0
    VERIFIED = 1
    ACCREDITED = 2

@dataclass
class ComplianceLayout:
    modes: Dict[Address, int] = field(default_factory=dict)
    required_mode: int = AccessMode.OPEN

COMPLIANCE = declare_region("pmmhost.collaborators.compliance", ComplianceLayout)

def can_access(storage: StorageSpace, account: Address, required_mode: int) -> bool:
    return COMPLIANCE.load(storage).modes.get(account, AccessMode.OPEN) >= required_mode

def required_mode(storage: StorageSpace) -> int:
    return COMPLIANCE.load(storage).required_mode

def _mode(value: int) -> int:
    try:
        return int(AccessMode(value))
    except ValueError:
        raise InputError(f"unknown access mode {value!r}") from None


class ComplianceModule(Module):
    name = "compliance"

    @entrypoint(ACCESS_MODE_OF, view=True)
    def access_mode_of(self, ctx: "CallContext", account: Address) -> int:
        return int(COMPLIANCE.load(ctx.storage).modes.get(account, AccessMode.OPEN))

    @entrypoint(SET_ACCESS_MODE)
    def set_access_mode(self, ctx: "CallContext", account: Address, mode: int) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, COMPLIANCE_ROLE, ctx.caller)
            require_address(account, "account")
            COMPLIANCE.load(ctx.storage).modes[account] = _mode(mode)
        ctx.emit("ACCESS_MODE_SET", actor_id=ctx.caller, meta={"account": account, "mode": int(mode)})

    @entrypoint(SET_REQUIRED_MODE)
    def set_required_mode(self, ctx: "CallContext", mode: int) -> None:
        with nonreentrant(ctx.storage):
            require_role(ctx.storage, COMPLIANCE_ROLE, ctx.caller)
            COMPLIANCE.load(ctx.storage).required_mode = _mode(mode)
        ctx.emit("REQUIRED_MODE_SET", actor_id=ctx.caller, meta={"mode": int(mode)})
