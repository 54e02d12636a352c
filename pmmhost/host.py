"""
Execution host.

The host owns the single StorageSpace and the table of deployed code. A call
names a function id (or its signature); the dispatch registry resolves the
module and the handler runs in place with a CallContext bound to the host's
storage. Every call, nested or not, is a transaction: on any exception the
writes and events of that call are discarded while the caller's survive.
Views run without a transaction.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging

from .config import HostConfig
from .core import Address, Event, EventLog, NULL_ADDRESS, Vault, make_address, require_address
from .cut import ModuleCut, apply_cut
from .errors import UnknownFunction
from .modules import Calldata, FunctionId, Module, entrypoint, function_id
from .registry import DispatchRegistry
from .storage import StorageSpace

logger = logging.getLogger(__name__)

FunctionRef = Union[str, FunctionId]

APPLY_CUT = "applyCut((uint8,address,bytes4[])[],address,bytes)"
RESOLVE = "resolve(bytes4)"
LIST_MODULES = "listModules()"
LIST_FUNCTION_IDS = "listFunctionIds(address)"
MODULES = "modules()"
OWNER = "owner()"
TRANSFER_OWNERSHIP = "transferOwnership(address)"


def _fid(ref: FunctionRef) -> FunctionId:
    return function_id(ref) if isinstance(ref, str) else bytes(ref)


@dataclass
class CallContext:
    host: "Host"
    caller: Address
    storage: StorageSpace
    this: Address

    @property
    def cfg(self) -> HostConfig:
        return self.host.cfg

    def registry(self) -> DispatchRegistry:
        return self.host.registry()

    def vault(self) -> Vault:
        return Vault(self.storage, debug=self.host.cfg.debug_balances)

    def emit(self, event_type: str, **fields: Any) -> None:
        self.host._emit(event_type, fields)

    def call(self, function: FunctionRef, *args: Any) -> Any:
        """Outgoing call back into the host, made by the host itself."""
        return self.host.call(self.this, function, *args)


class HostModule(Module):
    """The host's own entry points. Routed to the host address and never removable."""

    name = "host"

    @entrypoint(APPLY_CUT)
    def apply_cut(self, ctx: CallContext, cuts: Sequence[ModuleCut],
                  initializer: Address = NULL_ADDRESS, payload: Optional[Calldata] = None) -> None:
        apply_cut(ctx, cuts, initializer, payload)

    @entrypoint(RESOLVE, view=True)
    def resolve(self, ctx: CallContext, fid: FunctionId) -> Optional[Address]:
        return ctx.registry().resolve(fid)

    @entrypoint(LIST_MODULES, view=True)
    def list_modules(self, ctx: CallContext) -> List[Address]:
        return ctx.registry().list_modules()

    @entrypoint(LIST_FUNCTION_IDS, view=True)
    def list_function_ids(self, ctx: CallContext, module: Address) -> List[FunctionId]:
        return ctx.registry().list_function_ids(module)

    @entrypoint(MODULES, view=True)
    def modules(self, ctx: CallContext) -> List[Tuple[Address, List[FunctionId]]]:
        return ctx.registry().modules()

    @entrypoint(OWNER, view=True)
    def owner(self, ctx: CallContext) -> Address:
        return ctx.registry().owner()

    @entrypoint(TRANSFER_OWNERSHIP)
    def transfer_ownership(self, ctx: CallContext, new_owner: Address) -> None:
        previous = ctx.registry().transfer_ownership(ctx.caller, new_owner)
        logger.info("ownership transferred %s -> %s", previous, new_owner)
        ctx.emit("OWNERSHIP_TRANSFERRED", actor_id=ctx.caller, meta={"previous": previous, "owner": new_owner})


class Host:
    def __init__(self, owner: Address, cfg: Optional[HostConfig] = None, label: str = "pmmhost") -> None:
        self.cfg = cfg or HostConfig()
        self.address: Address = make_address(label)
        self.storage = StorageSpace()
        self.code: Dict[Address, Module] = {}
        self.log = EventLog(maxlen=self.cfg.event_log_maxlen)

        self.seq: int = 0
        self._depth: int = 0
        self._pending: List[Event] = []

        self.self_module = HostModule()
        self.code[self.address] = self.self_module

        registry = self.registry()
        registry.initialize_owner(owner)
        registry.add_routes(self.address, self.self_module.function_ids())

    # ---- code ----
    def deploy(self, module: Module, label: Optional[str] = None) -> Address:
        addr = make_address(label or f"{self.address}:{module.name}:{len(self.code)}")
        if addr in self.code:
            raise ValueError(f"address {addr} already holds code")
        self.code[addr] = module
        logger.debug("deployed %s at %s (%d entry points)", module.name, addr, len(module.handlers))
        return addr

    def has_code(self, addr: Address) -> bool:
        return addr in self.code

    def registry(self) -> DispatchRegistry:
        return DispatchRegistry(self.storage, self.address, self.has_code)

    # ---- calls ----
    def call(self, caller: Address, function: FunctionRef, *args: Any) -> Any:
        require_address(caller, "caller")
        fid = _fid(function)
        module_addr = self.registry().resolve(fid)
        if module_addr is None:
            raise UnknownFunction(f"no route for {function!r}")
        handler = self.code[module_addr].handler(fid)
        if handler is None:
            raise UnknownFunction(f"module {module_addr} has no code for {function!r}")
        ctx = CallContext(host=self, caller=caller, storage=self.storage, this=self.address)
        if self.code[module_addr].is_view(fid):
            return handler(ctx, *args)
        return self._transact(lambda: handler(ctx, *args))

    def delegate(self, ctx: CallContext, target: Address, payload: Calldata) -> Any:
        """Run ``target``'s code in place, against the storage ``ctx`` holds."""
        if target == self.address:
            module_addr = self.registry().resolve(payload.function_id)
            module = self.code.get(module_addr) if module_addr is not None else None
        else:
            module = self.code.get(target)
        handler = module.handler(payload.function_id) if module is not None else None
        if handler is None:
            raise UnknownFunction(f"{target} has no code for 0x{payload.function_id.hex()}")
        return handler(ctx, *payload.args)

    def _transact(self, fn: Callable[[], Any]) -> Any:
        outer = self._depth == 0
        if outer:
            self._pending = []
        snap = self.storage.snapshot()
        mark = len(self._pending)
        self._depth += 1
        try:
            result = fn()
        except BaseException as exc:
            self._depth -= 1
            self.storage.restore(snap)
            logger.debug("call reverted at depth %d (%s), %d event(s) dropped", self._depth,
                         getattr(exc, "reason", type(exc).__name__), len(self._pending) - mark)
            del self._pending[mark:]
            raise
        self._depth -= 1
        if outer:
            self.seq += 1
            self.log.extend(self._pending)
            self._pending = []
        return result

    def _emit(self, event_type: str, fields: Dict[str, Any]) -> None:
        self._pending.append(Event(seq=self.seq + 1, event_type=event_type, **fields))

    # ---- convenience reads ----
    def signature_of(self, fid: FunctionId) -> Optional[str]:
        addr = self.registry().resolve(fid)
        module = self.code.get(addr) if addr is not None else None
        return module.signature_of(fid) if module is not None else None
