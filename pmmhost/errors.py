from __future__ import annotations
from typing import Optional


class HostError(Exception):
    """Base failure. Raising any HostError aborts the whole invocation."""

    reason: str = "failed"

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


# -----------------------------
# Input validity
# -----------------------------
class InputError(HostError):
    reason = "invalid_input"

class ZeroAddress(InputError):
    reason = "zero_address"

class ZeroAmount(InputError):
    reason = "zero_amount"

class CoefficientOutOfRange(InputError):
    reason = "k_out_of_range"

class InvalidCutAction(InputError):
    reason = "invalid_cut_action"

class InvalidInitializer(InputError):
    reason = "invalid_initializer"

class NoCode(InputError):
    reason = "no_code"

class PositionOverflow(InputError):
    reason = "position_overflow"


# -----------------------------
# State consistency
# -----------------------------
class StateError(HostError):
    reason = "invalid_state"

class RouteExists(StateError):
    reason = "route_exists"

class RouteMissing(StateError):
    reason = "route_missing"

class ImmutableRoute(StateError):
    reason = "immutable_route"

class SameModule(StateError):
    reason = "same_module"

class AlreadyInitialized(StateError):
    reason = "already_initialized"

class ReentrancyError(StateError):
    reason = "reentrant_call"

class NotOwner(StateError):
    reason = "not_owner"

class Unauthorized(StateError):
    reason = "unauthorized"

class AccessDenied(StateError):
    reason = "compliance_denied"

class Paused(StateError):
    reason = "paused"

class PoolInactive(StateError):
    reason = "pool_inactive"

class UnknownPool(StateError):
    reason = "unknown_pool"

class UnknownFunction(StateError):
    reason = "unknown_function"


# -----------------------------
# Economic
# -----------------------------
class EconomicError(HostError):
    reason = "economic"

class InsufficientLiquidity(EconomicError):
    reason = "insufficient_liquidity"

class SlippageExceeded(EconomicError):
    reason = "slippage"

class InsufficientBalance(EconomicError):
    reason = "insufficient_balance"

class InsufficientShares(EconomicError):
    reason = "insufficient_shares"

class InsufficientFees(EconomicError):
    reason = "insufficient_fees"

class CircuitBreakerTripped(EconomicError):
    reason = "circuit_breaker"


# -----------------------------
# External call failure
# -----------------------------
class CallFailed(HostError):
    reason = "call_failed"

class InitializerReverted(CallFailed):
    reason = "initializer_reverted"
