"""
Deployable modules.

A module is stateless code: a set of entry points, each identified by the
first four bytes of the hash of its signature. Handlers receive the caller's
CallContext first and read/write state only through ``ctx.storage``, so the
same code runs in place against whichever host dispatches to it.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import hashlib

FunctionId = bytes
Handler = Callable[..., Any]

def function_id(signature: str) -> FunctionId:
    return hashlib.sha3_256(signature.encode("utf-8")).digest()[:4]

def entrypoint(signature: str, view: bool = False) -> Callable[[Handler], Handler]:
    """Mark a method as an entry point. A ``view`` never writes storage or emits events."""
    def mark(fn: Handler) -> Handler:
        fn.__entrypoint__ = signature
        fn.__view__ = view
        return fn
    return mark


@dataclass(frozen=True)
class Calldata:
    function_id: FunctionId = b""
    args: Tuple[Any, ...] = ()

    def __bool__(self) -> bool:
        return len(self.function_id) > 0

def encode_call(signature: str, *args: Any) -> Calldata:
    return Calldata(function_id=function_id(signature), args=tuple(args))


class Module:
    name = "module"

    def __init__(self) -> None:
        self.handlers: Dict[FunctionId, Handler] = {}
        self.signatures: Dict[FunctionId, str] = {}
        self.views: Set[FunctionId] = set()
        for attr in dir(type(self)):
            fn = getattr(type(self), attr, None)
            sig = getattr(fn, "__entrypoint__", None)
            if sig is None:
                continue
            fid = function_id(sig)
            if fid in self.signatures:
                raise RuntimeError(f"{self.name}: {sig} collides with {self.signatures[fid]}")
            self.handlers[fid] = getattr(self, attr)
            self.signatures[fid] = sig
            if getattr(fn, "__view__", False):
                self.views.add(fid)

    def function_ids(self) -> List[FunctionId]:
        return list(self.handlers.keys())

    def handler(self, fid: FunctionId) -> Optional[Handler]:
        return self.handlers.get(fid)

    def is_view(self, fid: FunctionId) -> bool:
        return fid in self.views

    def signature_of(self, fid: FunctionId) -> Optional[str]:
        return self.signatures.get(fid)
