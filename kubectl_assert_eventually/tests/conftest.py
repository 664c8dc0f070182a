import os

import pytest

from kubectl_assert_eventually.accessor import ObjectAccessor
from kubectl_assert_eventually.config import EnvConfig
from kubectl_assert_eventually.snapshot import SnapshotStore

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


class FakeClock:
    """
    Monotonic clock that only moves when something sleeps on it.
    """

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_object(name, api_version, kind, namespace="default", labels=None, **body):
    obj = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
    }
    obj.update(body)
    return obj


@pytest.fixture
def make():
    return make_object


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def cfg(store, clock):
    return EnvConfig(
        namespace="default",
        poll_timeout=300.0,
        poll_interval=0.5,
        accessor=ObjectAccessor(store),
        clock=clock,
        sleep=clock.sleep,
    )
