"""Shared fixtures for the pmmhost test suite."""

from __future__ import annotations

import pytest

from pmmhost.config import ONE, HostConfig
from pmmhost.core import make_address
from pmmhost.factory import Deployment, HostFactory
from pmmhost.host import Host
from pmmhost.modules import Module, entrypoint


# ── Test modules ─────────────────────────────────────────────────────────────


class Alpha(Module):
    name = "alpha"

    @entrypoint("alphaOne()")
    def one(self, ctx):
        return "alpha.one"

    @entrypoint("alphaTwo()")
    def two(self, ctx):
        return "alpha.two"

    @entrypoint("alphaThree()")
    def three(self, ctx):
        return "alpha.three"


class Beta(Module):
    name = "beta"

    @entrypoint("alphaOne()")
    def one(self, ctx):
        return "beta.one"

    @entrypoint("betaOne()")
    def beta_one(self, ctx):
        return "beta.beta_one"


# ── Hosts ────────────────────────────────────────────────────────────────────


@pytest.fixture
def owner() -> str:
    return make_address("test:owner")


@pytest.fixture
def bare_host(owner) -> Host:
    """A host carrying only its own entry points."""
    return Host(owner=owner, label="test:bare")


@pytest.fixture
def alpha(bare_host) -> str:
    return bare_host.deploy(Alpha(), label="test:alpha")


@pytest.fixture
def beta(bare_host) -> str:
    return bare_host.deploy(Beta(), label="test:beta")


@pytest.fixture
def factory() -> HostFactory:
    return HostFactory(HostConfig(fee_bps=30, protocol_fee_share_bps=2_000))


@pytest.fixture
def dep(factory) -> Deployment:
    return factory.deploy(label="test")


@pytest.fixture
def alice() -> str:
    return make_address("test:alice")


@pytest.fixture
def bob() -> str:
    return make_address("test:bob")


@pytest.fixture
def carol() -> str:
    return make_address("test:carol")


@pytest.fixture
def flat_pool(factory, dep) -> int:
    """BASE/QUOTE at 2 QUOTE per BASE, k = 0, reserves on their virtual targets."""
    return factory.create_funded_pool(
        dep, "BASE", "QUOTE", 1_000 * ONE, 2_000 * ONE, k=0, oracle_price=2 * ONE,
    )


@pytest.fixture
def funded_alice(factory, dep, alice) -> str:
    factory.fund(dep, alice, {"BASE": 100 * ONE, "QUOTE": 200 * ONE})
    return alice
