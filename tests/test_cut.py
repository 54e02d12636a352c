"""Tests for the host call path and batched route cuts."""

from __future__ import annotations

import pytest

from pmmhost.core import NULL_ADDRESS, make_address
from pmmhost.cut import CutAction, ModuleCut, add, remove, replace
from pmmhost.errors import (
    ImmutableRoute,
    InitializerReverted,
    InvalidCutAction,
    InvalidInitializer,
    NoCode,
    NotOwner,
    ReentrancyError,
    RouteExists,
    SameModule,
    Unauthorized,
    UnknownFunction,
    ZeroAddress,
)
from pmmhost.host import APPLY_CUT, LIST_FUNCTION_IDS, LIST_MODULES, MODULES, OWNER, RESOLVE, TRANSFER_OWNERSHIP
from pmmhost.modules import Calldata, Module, encode_call, entrypoint, function_id
from pmmhost.pool import EXCHANGE

ONE_ID = function_id("alphaOne()")
TWO_ID = function_id("alphaTwo()")
THREE_ID = function_id("alphaThree()")
BETA_ID = function_id("betaOne()")


class Seeder(Module):
    name = "seeder"

    @entrypoint("seed(uint256)")
    def seed(self, ctx, value):
        EXCHANGE.load(ctx.storage).fee_bps = value
        ctx.emit("SEEDED", amount=value)


class Failing(Module):
    name = "failing"

    @entrypoint("failHost()")
    def fail_host(self, ctx):
        EXCHANGE.load(ctx.storage).fee_bps = 999
        raise Unauthorized("initializer refused")

    @entrypoint("failBare()")
    def fail_bare(self, ctx):
        raise Exception()

    @entrypoint("failWithReason()")
    def fail_with_reason(self, ctx):
        raise ValueError("bad seed")

    @entrypoint("reenter()")
    def reenter(self, ctx):
        ctx.call(APPLY_CUT, [])


class Nested(Module):
    name = "nested"

    @entrypoint("writeThenFail()")
    def write_then_fail(self, ctx):
        EXCHANGE.load(ctx.storage).fee_bps = 999
        ctx.emit("WROTE")
        raise Unauthorized("nested refusal")

    @entrypoint("tryNested()")
    def try_nested(self, ctx):
        layout = EXCHANGE.load(ctx.storage)
        ctx.emit("OUTER")
        try:
            ctx.call("writeThenFail()")
        except Unauthorized:
            pass
        layout.protocol_share_bps = 5
        return layout.fee_bps


def _table(host, owner):
    return host.call(owner, MODULES)


class TestHostCalls:
    def test_self_routes_present(self, bare_host, owner):
        assert bare_host.call(owner, OWNER) == owner
        assert bare_host.call(owner, LIST_MODULES) == [bare_host.address]
        assert function_id(APPLY_CUT) in bare_host.call(owner, LIST_FUNCTION_IDS, bare_host.address)

    def test_call_by_signature_or_id(self, bare_host, owner, alpha):
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        assert bare_host.call(owner, "alphaOne()") == "alpha.one"
        assert bare_host.call(owner, ONE_ID) == "alpha.one"
        assert bare_host.call(owner, RESOLVE, ONE_ID) == alpha

    def test_unrouted_function_rejected(self, bare_host, owner):
        with pytest.raises(UnknownFunction):
            bare_host.call(owner, "alphaOne()")

    def test_zero_caller_rejected(self, bare_host):
        with pytest.raises(ZeroAddress):
            bare_host.call(NULL_ADDRESS, OWNER)

    def test_deploy_twice_at_one_label_rejected(self, bare_host, alpha):
        with pytest.raises(ValueError):
            bare_host.deploy(Seeder(), label="test:alpha")

    def test_transfer_ownership(self, bare_host, owner, alpha):
        new_owner = make_address("test:new-owner")
        with pytest.raises(NotOwner):
            bare_host.call(new_owner, TRANSFER_OWNERSHIP, new_owner)
        bare_host.call(owner, TRANSFER_OWNERSHIP, new_owner)
        assert bare_host.call(owner, OWNER) == new_owner
        with pytest.raises(NotOwner):
            bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        bare_host.call(new_owner, APPLY_CUT, [add(alpha, ONE_ID)])
        assert bare_host.log.of_type("OWNERSHIP_TRANSFERRED")[0].meta == {"previous": owner, "owner": new_owner}

    def test_views_run_without_a_snapshot(self, bare_host, owner, alpha, monkeypatch):
        taken = []
        snapshot = bare_host.storage.snapshot
        monkeypatch.setattr(bare_host.storage, "snapshot", lambda: taken.append(1) or snapshot())
        bare_host.call(owner, OWNER)
        bare_host.call(owner, MODULES)
        bare_host.call(owner, RESOLVE, ONE_ID)
        assert taken == []
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        assert len(taken) == 1


class TestNestedCalls:
    @pytest.fixture
    def nested_host(self, bare_host, owner):
        addr = bare_host.deploy(Nested(), label="test:nested")
        bare_host.call(owner, APPLY_CUT, [add(addr, function_id("writeThenFail()"), function_id("tryNested()"))])
        return bare_host

    def test_caught_failure_discards_only_the_inner_call(self, nested_host, owner):
        assert nested_host.call(owner, "tryNested()") == 0
        layout = EXCHANGE.load(nested_host.storage)
        assert (layout.fee_bps, layout.protocol_share_bps) == (0, 5)
        assert nested_host.log.of_type("WROTE") == []
        assert len(nested_host.log.of_type("OUTER")) == 1

    def test_uncaught_failure_discards_everything(self, nested_host, owner):
        with pytest.raises(Unauthorized):
            nested_host.call(owner, "writeThenFail()")
        assert EXCHANGE.load(nested_host.storage).fee_bps == 0
        assert nested_host.log.of_type("WROTE") == []


class TestCut:
    def test_add_replace_remove_in_one_batch(self, bare_host, owner, alpha, beta):
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID, TWO_ID, THREE_ID)])
        bare_host.call(owner, APPLY_CUT, [
            replace(beta, ONE_ID),
            add(beta, BETA_ID),
            remove(THREE_ID),
        ])
        assert bare_host.call(owner, "alphaOne()") == "beta.one"
        assert bare_host.call(owner, "betaOne()") == "beta.beta_one"
        assert bare_host.call(owner, "alphaTwo()") == "alpha.two"
        with pytest.raises(UnknownFunction):
            bare_host.call(owner, "alphaThree()")
        assert bare_host.registry().verify() == []

    def test_only_owner(self, bare_host, alpha):
        with pytest.raises(NotOwner):
            bare_host.call(make_address("test:stranger"), APPLY_CUT, [add(alpha, ONE_ID)])

    def test_failing_operation_rolls_back_batch(self, bare_host, owner, alpha, beta):
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        before = _table(bare_host, owner)
        with pytest.raises(RouteExists):
            bare_host.call(owner, APPLY_CUT, [add(alpha, TWO_ID), add(beta, ONE_ID)])
        assert _table(bare_host, owner) == before
        assert bare_host.registry().verify() == []

    def test_same_module_replace_rejected(self, bare_host, owner, alpha):
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        with pytest.raises(SameModule):
            bare_host.call(owner, APPLY_CUT, [replace(alpha, ONE_ID)])

    def test_module_without_code_rejected(self, bare_host, owner):
        with pytest.raises(NoCode):
            bare_host.call(owner, APPLY_CUT, [add(make_address("test:empty"), ONE_ID)])

    def test_self_routes_cannot_be_removed(self, bare_host, owner):
        with pytest.raises(ImmutableRoute):
            bare_host.call(owner, APPLY_CUT, [remove(function_id(APPLY_CUT))])
        assert bare_host.call(owner, OWNER) == owner

    def test_unknown_action_rejected(self, bare_host, owner, alpha):
        with pytest.raises(InvalidCutAction):
            bare_host.call(owner, APPLY_CUT, [ModuleCut(7, alpha, (ONE_ID,))])

    def test_cut_event_emitted(self, bare_host, owner, alpha):
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        events = bare_host.log.of_type("ROUTES_CUT")
        assert len(events) == 1
        cut = events[0].meta["cuts"][0]
        assert cut["action"] == CutAction.ADD.name
        assert cut["function_ids"] == ["0x" + ONE_ID.hex()]

    def test_failed_cut_emits_nothing(self, bare_host, owner):
        with pytest.raises(NoCode):
            bare_host.call(owner, APPLY_CUT, [add(make_address("test:empty"), ONE_ID)])
        assert bare_host.log.of_type("ROUTES_CUT") == []


class TestInitializer:
    def test_runs_in_place(self, bare_host, owner):
        seeder = bare_host.deploy(Seeder(), label="test:seeder")
        bare_host.call(owner, APPLY_CUT, [], seeder, encode_call("seed(uint256)", 42))
        assert EXCHANGE.load(bare_host.storage).fee_bps == 42
        assert [e.event_type for e in bare_host.log.tail(2)] == ["SEEDED", "ROUTES_CUT"]

    def test_self_initializer_sees_routes_added_by_the_same_cut(self, bare_host, owner):
        seeder = bare_host.deploy(Seeder(), label="test:seeder")
        seed_id = function_id("seed(uint256)")
        bare_host.call(owner, APPLY_CUT, [add(seeder, seed_id)], bare_host.address,
                       encode_call("seed(uint256)", 7))
        assert EXCHANGE.load(bare_host.storage).fee_bps == 7

    def test_payload_without_initializer_rejected(self, bare_host, owner):
        with pytest.raises(InvalidInitializer):
            bare_host.call(owner, APPLY_CUT, [], NULL_ADDRESS, encode_call("seed(uint256)", 1))

    def test_initializer_without_payload_rejected(self, bare_host, owner):
        seeder = bare_host.deploy(Seeder(), label="test:seeder")
        with pytest.raises(InvalidInitializer):
            bare_host.call(owner, APPLY_CUT, [], seeder, Calldata())

    def test_initializer_without_code_rejected(self, bare_host, owner):
        with pytest.raises(NoCode):
            bare_host.call(owner, APPLY_CUT, [], make_address("test:empty"), encode_call("seed(uint256)", 1))

    def test_host_error_propagates_verbatim(self, bare_host, owner, alpha):
        failing = bare_host.deploy(Failing(), label="test:failing")
        before = _table(bare_host, owner)
        with pytest.raises(Unauthorized, match="initializer refused"):
            bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)], failing, encode_call("failHost()"))
        assert _table(bare_host, owner) == before
        assert EXCHANGE.load(bare_host.storage).fee_bps == 0

    def test_reasonless_failure_becomes_initializer_reverted(self, bare_host, owner, alpha):
        failing = bare_host.deploy(Failing(), label="test:failing")
        with pytest.raises(InitializerReverted):
            bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)], failing, encode_call("failBare()"))
        assert bare_host.call(owner, RESOLVE, ONE_ID) is None

    def test_failure_with_reason_propagates(self, bare_host, owner, alpha):
        failing = bare_host.deploy(Failing(), label="test:failing")
        with pytest.raises(ValueError, match="bad seed"):
            bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)], failing, encode_call("failWithReason()"))
        assert bare_host.call(owner, RESOLVE, ONE_ID) is None

    def test_reentrant_cut_rejected(self, bare_host, owner, alpha):
        failing = bare_host.deploy(Failing(), label="test:failing")
        with pytest.raises(ReentrancyError):
            bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)], failing, encode_call("reenter()"))
        assert bare_host.call(owner, RESOLVE, ONE_ID) is None
        # latch released: a later cut goes through
        bare_host.call(owner, APPLY_CUT, [add(alpha, ONE_ID)])
        assert bare_host.call(owner, "alphaOne()") == "alpha.one"
