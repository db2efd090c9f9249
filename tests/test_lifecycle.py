import logging

import pytest

from vinculum.domain import Identity
from vinculum.lifecycle import LifecycleManager
from vinculum.providers import ConstructorProvider, ValueProvider


class Thing:
    pass


@pytest.fixture
def lifecycle() -> LifecycleManager:
    return LifecycleManager()


def test_singletons_are_cached(lifecycle):
    provider = ValueProvider(Thing(), Identity.of(Thing))
    value = Thing()

    assert not lifecycle.is_cached(provider)
    lifecycle.store(provider, value)

    assert lifecycle.is_cached(provider)
    assert lifecycle.cached(provider) is value


def test_prototypes_are_not_cached(lifecycle):
    provider = ConstructorProvider.from_factory(Thing, prototype=True)

    lifecycle.store(provider, Thing())

    assert not lifecycle.is_cached(provider)
    assert lifecycle.cached(provider, None) is None


def test_cleanups_run_in_reverse(lifecycle):
    events = []
    lifecycle.defer(lambda: events.append("first"))
    lifecycle.defer(lambda: events.append("second"))

    lifecycle.cleanup()
    lifecycle.cleanup()

    assert events == ["second", "first"]


def test_cleanup_forgets_instances(lifecycle):
    provider = ValueProvider(Thing(), Identity.of(Thing))
    lifecycle.store(provider, Thing())

    lifecycle.cleanup()

    assert not lifecycle.is_cached(provider)


def test_failing_cleanup_does_not_stop_the_others(lifecycle, caplog):
    events = []

    def fail():
        raise ValueError("boom")

    lifecycle.defer(lambda: events.append("first"))
    lifecycle.defer(fail)
    lifecycle.defer(lambda: events.append("last"))

    with caplog.at_level(logging.ERROR, logger="vinculum.lifecycle"):
        with pytest.raises(ValueError, match="boom"):
            lifecycle.cleanup()

    assert events == ["last", "first"]
    assert "failed" in caplog.text
