"""Tests for the dispatch registry (pmmhost/registry.py)."""

from __future__ import annotations

import random

import pytest

from pmmhost.core import NULL_ADDRESS, make_address
from pmmhost.errors import (
    AlreadyInitialized,
    ImmutableRoute,
    InputError,
    NoCode,
    NotOwner,
    RouteExists,
    RouteMissing,
    SameModule,
    ZeroAddress,
)
from pmmhost.modules import function_id
from pmmhost.registry import DispatchRegistry
from pmmhost.storage import StorageSpace

SELF = make_address("test:registry:self")
ONE_ID, TWO_ID, THREE_ID = (function_id(s) for s in ("alphaOne()", "alphaTwo()", "alphaThree()"))


def _registry(has_code=lambda addr: True) -> DispatchRegistry:
    return DispatchRegistry(StorageSpace(), SELF, has_code)


def _mod(n: int) -> str:
    return make_address(f"test:registry:module:{n}")


class TestAdd:
    def test_routes_resolve_to_module(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID, TWO_ID])
        assert reg.resolve(ONE_ID) == _mod(1)
        assert reg.resolve(TWO_ID) == _mod(1)
        assert reg.resolve(THREE_ID) is None
        assert reg.list_modules() == [_mod(1)]
        assert reg.list_function_ids(_mod(1)) == [ONE_ID, TWO_ID]
        assert reg.verify() == []

    def test_existing_route_rejected(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        with pytest.raises(RouteExists):
            reg.add_routes(_mod(2), [ONE_ID])

    def test_rejected_add_leaves_module_unlisted(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        with pytest.raises(RouteExists):
            reg.add_routes(_mod(2), [TWO_ID, ONE_ID])
        assert reg.list_modules() == [_mod(1)]
        assert reg.resolve(TWO_ID) is None
        assert reg.verify() == []

    def test_duplicate_ids_in_one_add_rejected(self):
        reg = _registry()
        with pytest.raises(RouteExists):
            reg.add_routes(_mod(1), [ONE_ID, ONE_ID])
        assert reg.list_modules() == []
        assert reg.verify() == []

    def test_module_without_code_rejected(self):
        reg = _registry(has_code=lambda addr: False)
        with pytest.raises(NoCode):
            reg.add_routes(_mod(1), [ONE_ID])

    def test_self_address_needs_no_code(self):
        reg = _registry(has_code=lambda addr: False)
        reg.add_routes(SELF, [ONE_ID])
        assert reg.resolve(ONE_ID) == SELF

    def test_zero_module_rejected(self):
        with pytest.raises(ZeroAddress):
            _registry().add_routes(NULL_ADDRESS, [ONE_ID])

    def test_empty_selection_rejected(self):
        with pytest.raises(InputError):
            _registry().add_routes(_mod(1), [])


class TestReplace:
    def test_moves_route_between_modules(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID, TWO_ID])
        reg.replace_routes(_mod(2), [ONE_ID])
        assert reg.resolve(ONE_ID) == _mod(2)
        assert reg.list_function_ids(_mod(1)) == [TWO_ID]
        assert reg.list_function_ids(_mod(2)) == [ONE_ID]
        assert reg.verify() == []

    def test_same_module_rejected(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        with pytest.raises(SameModule):
            reg.replace_routes(_mod(1), [ONE_ID])

    def test_missing_route_rejected(self):
        with pytest.raises(RouteMissing):
            _registry().replace_routes(_mod(1), [ONE_ID])

    def test_rejected_replace_leaves_module_unlisted(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        with pytest.raises(RouteMissing):
            reg.replace_routes(_mod(2), [ONE_ID, TWO_ID])
        assert reg.list_modules() == [_mod(1)]
        assert reg.resolve(ONE_ID) == _mod(1)
        assert reg.verify() == []

    def test_self_route_is_immutable(self):
        reg = _registry()
        reg.add_routes(SELF, [ONE_ID])
        with pytest.raises(ImmutableRoute):
            reg.replace_routes(_mod(1), [ONE_ID])

    def test_emptied_module_is_delisted(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        reg.replace_routes(_mod(2), [ONE_ID])
        assert reg.list_modules() == [_mod(2)]
        assert reg.verify() == []


class TestRemove:
    def test_swap_with_last_keeps_positions(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID, TWO_ID, THREE_ID])
        reg.remove_routes(NULL_ADDRESS, [ONE_ID])
        assert reg.resolve(ONE_ID) is None
        assert reg.list_function_ids(_mod(1)) == [THREE_ID, TWO_ID]
        assert reg.layout.routes[THREE_ID].position == 0
        assert reg.verify() == []

    def test_last_function_delists_module(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        reg.add_routes(_mod(2), [TWO_ID])
        reg.add_routes(_mod(3), [THREE_ID])
        reg.remove_routes(NULL_ADDRESS, [ONE_ID])
        assert reg.list_modules() == [_mod(3), _mod(2)]
        assert reg.layout.modules[_mod(3)].position == 0
        assert reg.list_function_ids(_mod(1)) == []
        assert reg.verify() == []

    def test_readding_delisted_module_relists_it(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        reg.remove_routes(NULL_ADDRESS, [ONE_ID])
        reg.add_routes(_mod(1), [TWO_ID])
        assert reg.list_modules() == [_mod(1)]
        assert reg.verify() == []

    def test_missing_route_rejected(self):
        with pytest.raises(RouteMissing):
            _registry().remove_routes(NULL_ADDRESS, [ONE_ID])

    def test_nonzero_target_rejected(self):
        reg = _registry()
        reg.add_routes(_mod(1), [ONE_ID])
        with pytest.raises(InputError):
            reg.remove_routes(_mod(1), [ONE_ID])

    def test_self_route_is_immutable(self):
        reg = _registry()
        reg.add_routes(SELF, [ONE_ID])
        with pytest.raises(ImmutableRoute):
            reg.remove_routes(NULL_ADDRESS, [ONE_ID])


class TestRandomSequences:
    """Valid add/replace/remove sequences keep the table consistent with a plain dict model."""

    @pytest.mark.parametrize("seed", range(8))
    def test_matches_model(self, seed):
        rng = random.Random(seed)
        reg = _registry()
        ids = [bytes([i, 0xAB, 0xCD, 0xEF]) for i in range(40)]
        modules = [_mod(n) for n in range(6)]
        model = {}

        for _ in range(300):
            routed = [f for f in ids if f in model]
            free = [f for f in ids if f not in model]
            op = rng.choice(["add", "replace", "remove"])
            if op == "add" and free:
                target = rng.choice(modules)
                picked = rng.sample(free, rng.randint(1, min(4, len(free))))
                reg.add_routes(target, picked)
                model.update({f: target for f in picked})
            elif op == "replace" and routed:
                target = rng.choice(modules)
                movable = [f for f in routed if model[f] != target]
                if not movable:
                    continue
                picked = rng.sample(movable, rng.randint(1, min(4, len(movable))))
                reg.replace_routes(target, picked)
                model.update({f: target for f in picked})
            elif op == "remove" and routed:
                picked = rng.sample(routed, rng.randint(1, min(4, len(routed))))
                reg.remove_routes(NULL_ADDRESS, picked)
                for f in picked:
                    del model[f]

            assert reg.verify() == []
            for f in ids:
                assert reg.resolve(f) == model.get(f)
            assert sorted(reg.list_modules()) == sorted(set(model.values()))
            for m in modules:
                assert sorted(reg.list_function_ids(m)) == sorted(f for f, owner in model.items() if owner == m)


class TestOwnership:
    def test_initialize_once(self):
        reg = _registry()
        reg.initialize_owner(_mod(9))
        assert reg.owner() == _mod(9)
        with pytest.raises(AlreadyInitialized):
            reg.initialize_owner(_mod(8))

    def test_zero_owner_rejected(self):
        with pytest.raises(ZeroAddress):
            _registry().initialize_owner(NULL_ADDRESS)

    def test_transfer_requires_owner(self):
        reg = _registry()
        reg.initialize_owner(_mod(9))
        with pytest.raises(NotOwner):
            reg.transfer_ownership(_mod(1), _mod(2))
        assert reg.transfer_ownership(_mod(9), _mod(2)) == _mod(9)
        assert reg.owner() == _mod(2)
