"""
Registry cuts: the only way routes change after construction.

A cut is an ordered batch of ADD / REPLACE / REMOVE operations followed by an
optional initializer call that runs in place against the host's storage. The
batch runs inside the host call's transaction, so it is all-or-nothing: any
failure discards every route change and initializer write.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Optional, Sequence, Tuple
import logging

from .core import Address, NULL_ADDRESS
from .errors import HostError, InitializerReverted, InvalidCutAction, InvalidInitializer, NoCode
from .guard import nonreentrant
from .modules import Calldata, FunctionId

if TYPE_CHECKING:
    from .host import CallContext

logger = logging.getLogger(__name__)

class CutAction(IntEnum):
    ADD = 0
    REPLACE = 1
    REMOVE = 2

@dataclass(frozen=True)
class ModuleCut:
    action: int
    module: Address
    function_ids: Tuple[FunctionId, ...]

    def to_dict(self) -> dict:
        try:
            action = CutAction(self.action).name
        except ValueError:
            action = str(self.action)
        return {
            "action": action,
            "module": self.module,
            "function_ids": ["0x" + f.hex() for f in self.function_ids],
        }

def add(module: Address, *fids: FunctionId) -> ModuleCut:
    return ModuleCut(CutAction.ADD, module, tuple(fids))

def replace(module: Address, *fids: FunctionId) -> ModuleCut:
    return ModuleCut(CutAction.REPLACE, module, tuple(fids))

def remove(*fids: FunctionId) -> ModuleCut:
    return ModuleCut(CutAction.REMOVE, NULL_ADDRESS, tuple(fids))


def apply_cut(ctx: "CallContext", cuts: Sequence[ModuleCut],
              initializer: Address = NULL_ADDRESS, payload: Optional[Calldata] = None) -> None:
    registry = ctx.registry()
    with nonreentrant(ctx.storage):
        registry.require_owner(ctx.caller)
        for cut in cuts:
            if cut.action == CutAction.ADD:
                registry.add_routes(cut.module, cut.function_ids)
            elif cut.action == CutAction.REPLACE:
                registry.replace_routes(cut.module, cut.function_ids)
            elif cut.action == CutAction.REMOVE:
                registry.remove_routes(cut.module, cut.function_ids)
            else:
                raise InvalidCutAction(f"unknown cut action {cut.action!r}")
        _initialize(ctx, initializer, payload)

    logger.info("cut applied: %d operation(s), initializer=%s", len(cuts), initializer)
    ctx.emit(
        "ROUTES_CUT",
        meta={"cuts": [c.to_dict() for c in cuts], "initializer": initializer},
    )


def _initialize(ctx: "CallContext", initializer: Address, payload: Optional[Calldata]) -> None:
    if initializer == NULL_ADDRESS:
        if payload:
            raise InvalidInitializer("payload given without an initializer")
        return
    if not payload:
        raise InvalidInitializer("initializer given with an empty payload")
    if initializer != ctx.this and not ctx.host.has_code(initializer):
        raise NoCode(f"no code deployed at initializer {initializer}")
    try:
        ctx.host.delegate(ctx, initializer, payload)
    except HostError:
        raise
    except Exception as exc:
        if exc.args:
            raise
        raise InitializerReverted("initializer reverted") from exc
