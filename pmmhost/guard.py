from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from .errors import ReentrancyError
from .storage import StorageSpace, declare_region

UNSET = 0
UNLOCKED = 1
LOCKED = 2

@dataclass
class LatchLayout:
    status: int = UNSET

LATCH = declare_region("pmmhost.reentrancy.latch", LatchLayout)

def enter(storage: StorageSpace) -> None:
    latch = LATCH.load(storage)
    if latch.status == UNSET:
        latch.status = UNLOCKED
    if latch.status == LOCKED:
        raise ReentrancyError("reentrant call")
    latch.status = LOCKED

def exit(storage: StorageSpace) -> None:
    LATCH.load(storage).status = UNLOCKED

def is_locked(storage: StorageSpace) -> bool:
    return LATCH.load(storage).status == LOCKED

@contextmanager
def nonreentrant(storage: StorageSpace) -> Iterator[None]:
    enter(storage)
    try:
        yield
    finally:
        exit(storage)
