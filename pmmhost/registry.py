from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from .core import Address, NULL_ADDRESS, require_address
from .errors import (
    AlreadyInitialized,
    ImmutableRoute,
    InputError,
    NoCode,
    NotOwner,
    PositionOverflow,
    RouteExists,
    RouteMissing,
    SameModule,
)
from .modules import FunctionId
from .storage import StorageSpace, declare_region

logger = logging.getLogger(__name__)

MAX_POSITION = 0xFFFF  # positions are uint16

@dataclass
class RouteEntry:
    module: Address
    position: int  # index in the owning module's function_ids

@dataclass
class ModuleEntry:
    function_ids: List[FunctionId] = field(default_factory=list)
    position: int = 0  # index in RegistryLayout.module_addresses

@dataclass
class RegistryLayout:
    routes: Dict[FunctionId, RouteEntry] = field(default_factory=dict)
    modules: Dict[Address, ModuleEntry] = field(default_factory=dict)
    module_addresses: List[Address] = field(default_factory=list)
    owner: Address = NULL_ADDRESS
    initialized: bool = False

REGISTRY = declare_region("pmmhost.registry.dispatch", RegistryLayout)


class DispatchRegistry:
    """
    Function id -> module routing table.

    Every owning list is an array plus a position index, so removal is
    swap-with-last then pop. Order inside a list is not preserved; the
    recorded positions are.
    """

    def __init__(self, storage: StorageSpace, self_address: Address,
                 has_code: Callable[[Address], bool]) -> None:
        self.layout = REGISTRY.load(storage)
        self.self_address = self_address
        self.has_code = has_code

    # ---- introspection ----
    def resolve(self, fid: FunctionId) -> Optional[Address]:
        r = self.layout.routes.get(fid)
        return r.module if r is not None else None

    def list_modules(self) -> List[Address]:
        return list(self.layout.module_addresses)

    def list_function_ids(self, module: Address) -> List[FunctionId]:
        m = self.layout.modules.get(module)
        return list(m.function_ids) if m is not None else []

    def modules(self) -> List[Tuple[Address, List[FunctionId]]]:
        return [(a, self.list_function_ids(a)) for a in self.layout.module_addresses]

    # ---- ownership ----
    def owner(self) -> Address:
        return self.layout.owner

    def initialize_owner(self, owner: Address) -> None:
        if self.layout.initialized:
            raise AlreadyInitialized("ownership already initialized")
        require_address(owner, "owner")
        self.layout.owner = owner
        self.layout.initialized = True

    def require_owner(self, caller: Address) -> None:
        if caller != self.layout.owner:
            raise NotOwner(f"{caller} is not the registry owner")

    def transfer_ownership(self, caller: Address, new_owner: Address) -> Address:
        self.require_owner(caller)
        require_address(new_owner, "new owner")
        previous = self.layout.owner
        self.layout.owner = new_owner
        return previous

    # ---- mutation ----
    def add_routes(self, module: Address, fids: Sequence[FunctionId]) -> None:
        if not fids:
            raise InputError("no function ids to add")
        require_address(module, "module")
        seen = set()
        for fid in fids:
            if fid in seen or self.resolve(fid) is not None:
                raise RouteExists(f"function 0x{fid.hex()} already routed")
            seen.add(fid)
        entry = self.layout.modules.get(module)
        if entry is None or not entry.function_ids:
            entry = self._add_module(module)
        for fid in fids:
            self._add_route(fid, module, entry)

    def replace_routes(self, module: Address, fids: Sequence[FunctionId]) -> None:
        if not fids:
            raise InputError("no function ids to replace")
        require_address(module, "module")
        seen = set()
        for fid in fids:
            old = self.resolve(fid)
            if fid in seen or old == module:
                raise SameModule(f"function 0x{fid.hex()} already routed to {module}")
            self._require_movable(old, fid)
            seen.add(fid)
        entry = self.layout.modules.get(module)
        if entry is None or not entry.function_ids:
            entry = self._add_module(module)
        for fid in fids:
            self._remove_route(self.resolve(fid), fid)
            self._add_route(fid, module, entry)

    def remove_routes(self, module: Address, fids: Sequence[FunctionId]) -> None:
        if not fids:
            raise InputError("no function ids to remove")
        if module != NULL_ADDRESS:
            raise InputError("remove target must be the zero address")
        for fid in fids:
            self._remove_route(self.resolve(fid), fid)

    def _add_module(self, module: Address) -> ModuleEntry:
        if module != self.self_address and not self.has_code(module):
            raise NoCode(f"no code deployed at {module}")
        position = len(self.layout.module_addresses)
        if position > MAX_POSITION:
            raise PositionOverflow("module list is full")
        entry = ModuleEntry(function_ids=[], position=position)
        self.layout.modules[module] = entry
        self.layout.module_addresses.append(module)
        logger.debug("module %s listed at position %d", module, position)
        return entry

    def _add_route(self, fid: FunctionId, module: Address, entry: ModuleEntry) -> None:
        position = len(entry.function_ids)
        if position > MAX_POSITION:
            raise PositionOverflow(f"module {module} owns too many functions")
        entry.function_ids.append(fid)
        self.layout.routes[fid] = RouteEntry(module=module, position=position)

    def _require_movable(self, module: Optional[Address], fid: FunctionId) -> None:
        if module is None or module == NULL_ADDRESS:
            raise RouteMissing(f"function 0x{fid.hex()} is not routed")
        if module == self.self_address:
            raise ImmutableRoute(f"function 0x{fid.hex()} is a permanent entry point")

    def _remove_route(self, module: Optional[Address], fid: FunctionId) -> None:
        self._require_movable(module, fid)

        entry = self.layout.modules[module]
        ids = entry.function_ids
        position = self.layout.routes[fid].position
        last = len(ids) - 1
        if position != last:
            moved = ids[last]
            ids[position] = moved
            self.layout.routes[moved].position = position
        ids.pop()
        del self.layout.routes[fid]

        if not ids:
            addrs = self.layout.module_addresses
            mpos = entry.position
            mlast = len(addrs) - 1
            if mpos != mlast:
                moved_module = addrs[mlast]
                addrs[mpos] = moved_module
                self.layout.modules[moved_module].position = mpos
            addrs.pop()
            del self.layout.modules[module]
            logger.debug("module %s delisted", module)

    def verify(self) -> List[str]:
        """Position-index consistency problems; empty when the table is sound."""
        problems: List[str] = []
        for fid, route in self.layout.routes.items():
            entry = self.layout.modules.get(route.module)
            if entry is None:
                problems.append(f"0x{fid.hex()} routed to unlisted module {route.module}")
            elif route.position >= len(entry.function_ids) or entry.function_ids[route.position] != fid:
                problems.append(f"0x{fid.hex()} position {route.position} is stale")
        for i, addr in enumerate(self.layout.module_addresses):
            entry = self.layout.modules.get(addr)
            if entry is None:
                problems.append(f"{addr} listed without a record")
                continue
            if entry.position != i:
                problems.append(f"{addr} recorded at {entry.position}, listed at {i}")
            if not entry.function_ids:
                problems.append(f"{addr} listed with no functions")
        if len(self.layout.modules) != len(self.layout.module_addresses):
            problems.append("module records and module list differ in size")
        return problems
