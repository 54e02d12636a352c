"""
Namespaced storage.

One StorageSpace holds the persistent state of every module. It is carved into
disjoint regions, each addressed by a 256-bit key derived from a tag string.
Modules never share a region object; they reach their own through a
RegionSpec declared once at import time.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, TypeVar
import copy
import hashlib
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

def storage_key(tag: str) -> int:
    return int.from_bytes(hashlib.sha3_256(tag.encode("utf-8")).digest(), "big")

# key -> tag of every declared region
_RESERVED: Dict[int, str] = {}


@dataclass(frozen=True)
class RegionSpec(Generic[T]):
    tag: str
    key: int
    factory: Callable[[], T]

    def load(self, storage: "StorageSpace") -> T:
        return storage.region(self.key, self.factory)


def declare_region(tag: str, factory: Callable[[], T]) -> RegionSpec[T]:
    key = storage_key(tag)
    owner = _RESERVED.get(key)
    if owner is not None:
        raise RuntimeError(f"storage region {tag!r} collides with {owner!r}")
    _RESERVED[key] = tag
    return RegionSpec(tag=tag, key=key, factory=factory)


def reserved_regions() -> Dict[int, str]:
    return dict(_RESERVED)


class StorageSpace:
    def __init__(self) -> None:
        self._regions: Dict[int, Any] = {}

    def region(self, key: int, factory: Callable[[], T]) -> T:
        r = self._regions.get(key)
        if r is None:
            if key not in _RESERVED:
                raise KeyError(f"undeclared storage region 0x{key:064x}")
            r = factory()
            self._regions[key] = r
        return r

    def keys(self) -> list[int]:
        return list(self._regions.keys())

    def snapshot(self) -> Dict[int, Any]:
        return copy.deepcopy(self._regions)

    def restore(self, snap: Dict[int, Any]) -> None:
        """Roll every region back to ``snap``, keeping live region objects in place."""
        for key in [k for k in self._regions if k not in snap]:
            del self._regions[key]
        for key, saved in snap.items():
            live = self._regions.get(key)
            if live is None or type(live) is not type(saved) or not hasattr(saved, "__dict__"):
                self._regions[key] = saved
            else:
                live.__dict__.clear()
                live.__dict__.update(saved.__dict__)
        logger.debug("storage restored to snapshot (%d regions)", len(snap))
