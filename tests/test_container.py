import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Annotated, Iterator, Optional

import pytest

from vinculum.container import Container
from vinculum.errors import (
    AmbiguousError,
    ConstructionError,
    CycleError,
    DependencyError,
    InvocationError,
    NotFoundError,
    RegistrationError,
)
from vinculum.inject import Inject, Injectable
from vinculum.providers import Cleanup
from vinculum.tracing import LoggingTracer


class Closer:
    closed = False

    def close(self):
        self.closed = True


class Server(Closer):
    pass


class Client(Closer):
    def __init__(self, server: Server):
        self.server = server


class Missing:
    pass


class Plugin:
    def __init__(self, name: str):
        self.name = name


class Settings:
    def __init__(self, port: int, missing: Optional[Missing], label: str):
        self.port = port
        self.missing = missing
        self.label = label


class Metrics:
    pass


class Application(Injectable):
    server: Server = Inject()
    client: Client = Inject()
    metrics: Metrics = Inject(optional=True)


class A:
    pass


class B:
    pass


class C:
    pass


def make_a(b: B) -> A:
    return A()


def make_b(c: C) -> B:
    return B()


def make_c(a: A) -> C:
    return C()


def plugin_factory(name: str, built: list):
    def make_plugin() -> Plugin:
        built.append(name)
        return Plugin(name)

    return make_plugin


@pytest.fixture
def container() -> Container:
    return Container()


def test_singleton_is_built_once(container):
    built = []

    def make_server() -> Server:
        built.append("server")
        return Server()

    container.provide(make_server)

    assert container.resolve(Server) is container.resolve(Server)
    assert built == ["server"]


def test_nothing_is_built_at_registration(container):
    built = []

    def make_server() -> Server:
        built.append("server")
        return Server()

    container.provide(make_server)

    assert built == []


def test_prototype_is_built_every_time(container):
    container.provide(Server, prototype=True)

    assert container.resolve(Server) is not container.resolve(Server)


def test_dependencies_are_resolved(container):
    container.provide(Server)
    container.provide(Client)

    client = container.resolve(Client)

    assert client.server is container.resolve(Server)


def test_provides_decorator_returns_factory(container):
    @container.provides("main", tags={"http": "public"})
    def make_server() -> Server:
        return Server()

    assert isinstance(make_server(), Server)
    assert isinstance(container.resolve(Server, name="main"), Server)
    assert isinstance(container.resolve(Server, tags={"http": "*"}), Server)


def test_provide_value(container):
    server = Server()
    container.provide_value(server, type_=Closer, name="main")

    assert container.resolve(Closer, name="main") is server
    assert not container.has(Server)


def test_provide_none_value_is_rejected(container):
    with pytest.raises(RegistrationError, match="Invalid value, got None"):
        container.provide_value(None)


def test_cycle_is_detected_before_building(container):
    container.provide(make_a)
    container.provide(make_b)
    container.provide(make_c)

    with pytest.raises(CycleError, match=r"\[A B C A\] cycle detected"):
        container.resolve(A)


def test_missing_dependency(container):
    container.provide(Client)

    with pytest.raises(NotFoundError, match="Client: Server not found"):
        container.resolve(Client)


def test_ambiguous_request(container):
    container.provide(Server, name="a")
    container.provide(Server, name="b")

    with pytest.raises(AmbiguousError, match="Multiple definitions of Server"):
        container.resolve(Server)
    assert container.resolve(Server, name="a") is not container.resolve(Server, name="b")


def test_ambiguous_dependency_names_its_dependent(container):
    container.provide(Server, name="a")
    container.provide(Server, name="b")
    container.provide(Client)

    with pytest.raises(AmbiguousError, match="Client: Multiple definitions of Server"):
        container.resolve(Client)


def test_named_dependency(container):
    def make_client(server: Annotated[Server, "b"]) -> Client:
        return Client(server)

    container.provide(Server, name="a")
    container.provide(Server, name="b")
    container.provide(make_client)

    assert container.resolve(Client).server is container.resolve(Server, name="b")


def test_tagged_dependency(container):
    def make_client(server: Annotated[Server, Inject(tags={"http": "admin"})]) -> Client:
        return Client(server)

    container.provide(Server, tags={"http": "public"})
    container.provide(Server, tags={"http": "admin"})
    container.provide(make_client)

    client = container.resolve(Client)
    assert client.server is container.resolve(Server, tags={"http": "admin"})


def test_strict_container_rejects_duplicates():
    container = Container(strict=True)
    container.provide(Server)

    with pytest.raises(RegistrationError, match="Server is already provided"):
        container.provide(Server)


def test_interface_shares_concrete_singleton(container):
    container.provide(Server, as_=[Closer])

    assert container.resolve(Closer) is container.resolve(Server)


def test_interface_must_be_implemented(container):
    with pytest.raises(RegistrationError, match="Server does not implement Plugin"):
        container.provide(Server, as_=[Plugin])


def test_group_in_registration_order(container):
    container.provide(Server, as_=[Closer])
    container.provide(Client, as_=[Closer])

    closers = container.resolve(list[Closer])

    assert [type(closer) for closer in closers] == [Server, Client]
    assert closers[0] is container.resolve(Server)
    assert closers[1].server is closers[0]


def test_group_follows_later_registrations(container):
    container.provide(Server, as_=[Closer])
    first = container.resolve(list[Closer])

    container.provide(Client, as_=[Closer])
    second = container.resolve(list[Closer])

    assert len(first) == 1
    assert len(second) == 2
    assert second[0] is first[0]


def test_group_dependency(container):
    def close_all(closers: list[Closer]) -> int:
        for closer in closers:
            closer.close()
        return len(closers)

    container.provide(Server, as_=[Closer])
    container.provide(Client, as_=[Closer])

    assert container.invoke(close_all) == 2
    assert container.resolve(Client).closed


def test_empty_group_is_not_found(container):
    with pytest.raises(NotFoundError, match=r"list\[Closer\] not found"):
        container.resolve(list[Closer])


def test_cleanup_runs_dependents_first(container):
    events = []

    def make_server() -> tuple[Server, Cleanup]:
        return Server(), lambda: events.append("server")

    def make_client(server: Server) -> tuple[Client, Cleanup]:
        return Client(server), lambda: events.append("client")

    container.provide(make_client)
    container.provide(make_server)
    container.resolve(Client)

    container.cleanup()

    assert events == ["client", "server"]


def test_generator_cleanup_and_rebuild(container):
    events = []

    def make_server() -> Iterator[Server]:
        events.append("open")
        server = Server()
        yield server
        server.close()
        events.append("close")

    container.provide(make_server)
    first = container.resolve(Server)

    container.cleanup()

    assert first.closed
    assert events == ["open", "close"]
    assert container.resolve(Server) is not first


def test_prototype_cleanups_are_all_kept(container):
    events = []

    def make_server() -> tuple[Server, Cleanup]:
        return Server(), lambda: events.append("server")

    container.provide(make_server, prototype=True)
    container.resolve(Server)
    container.resolve(Server)

    container.cleanup()

    assert events == ["server", "server"]


def test_optional_dependencies_get_defaults(container):
    def make_settings(
        missing: Optional[Missing],
        label: Annotated[str, Inject(optional=True, default="none")],
        port: int = 8080,
    ) -> Settings:
        return Settings(port, missing, label)

    container.provide(make_settings)

    settings = container.resolve(Settings)
    assert settings.port == 8080
    assert settings.missing is None
    assert settings.label == "none"


def test_optional_dependency_is_used_when_provided(container):
    def make_settings(port: int = 8080) -> Settings:
        return Settings(port, None, "")

    container.provide_value(9090)
    container.provide(make_settings)

    assert container.resolve(Settings).port == 9090


def test_injectable_is_synthesised_and_populated(container):
    container.provide(Server)
    container.provide(Client)

    app = container.resolve(Application)

    assert app.server is container.resolve(Server)
    assert app.client.server is app.server
    assert app.metrics is None
    assert container.resolve(Application) is not app


def test_injectable_returned_by_constructor_is_populated(container):
    container.provide(Server)
    container.provide(Client)
    container.provide_value(Metrics())

    @container.provides()
    def make_application() -> Application:
        return Application()

    app = container.resolve(Application)

    assert app.metrics is container.resolve(Metrics)
    assert container.resolve(Application) is app


def test_injected_field_missing(container):
    container.provide(Server)

    with pytest.raises(NotFoundError, match="Application: Client not found"):
        container.resolve(Application)


def test_construction_error_keeps_cause(container):
    def make_server() -> Server:
        raise ValueError("boom")

    container.provide(make_server)
    container.provide(Client)

    with pytest.raises(ConstructionError, match="Client: Server: ValueError: boom") as info:
        container.resolve(Client)
    assert isinstance(info.value.__cause__, ValueError)


def test_decorators_run_once_before_caching(container):
    decorated = []
    container.provide(Server, decorators=[decorated.append])

    server = container.resolve(Server)
    container.resolve(Server)

    assert decorated == [server]


def test_failed_decorator_cleans_up_immediately(container):
    events = []

    def make_server() -> Iterator[Server]:
        yield Server()
        events.append("cleanup")

    def reject(server):
        raise ValueError("rejected")

    container.provide(make_server, decorators=[reject])

    with pytest.raises(ConstructionError, match="Server: ValueError: rejected"):
        container.resolve(Server)
    assert events == ["cleanup"]


def test_container_provides_itself(container):
    def make_server(provided: Container) -> Server:
        assert provided is container
        return Server()

    container.provide(make_server)

    assert container.resolve(Container) is container
    assert isinstance(container.resolve(Server), Server)


def test_has(container):
    container.provide(Server)

    assert container.has(Server)
    assert not container.has(Client)
    assert not container.has(Server, name="other")
    assert not container.has(list[Client])


def test_has_reports_broken_dependencies(container):
    container.provide(Client)

    with pytest.raises(NotFoundError, match="Client: Server not found"):
        container.has(Client)


def test_has_does_not_build(container):
    built = []

    def make_server() -> Server:
        built.append("server")
        return Server()

    container.provide(make_server)

    assert container.has(Server)
    assert built == []


def test_invoke(container):
    def handler(server: Server, port: int = 80) -> str:
        return f"{type(server).__name__}:{port}"

    container.provide(Server)

    assert container.invoke(handler) == "Server:80"


def test_invoke_passes_exceptions_through(container):
    def handler(server: Server) -> None:
        raise KeyError("handler")

    container.provide(Server)

    with pytest.raises(KeyError, match="handler"):
        container.invoke(handler)


@pytest.mark.parametrize("fn", [None, Server, 42])
def test_invoke_rejects_non_functions(container, fn):
    with pytest.raises(InvocationError, match="Invalid invocation signature"):
        container.invoke(fn)


def test_invoke_rejects_unannotated_parameters(container):
    def handler(server):
        pass

    with pytest.raises(InvocationError, match="is not annotated"):
        container.invoke(handler)


def test_invoke_missing_dependency(container):
    def handler(missing: Missing) -> None:
        pass

    with pytest.raises(NotFoundError, match="Missing not found"):
        container.invoke(handler)


def test_iterate_loads_lazily(container):
    built = []
    for name in ("one", "two", "three"):
        container.provide(plugin_factory(name, built), tags={"name": name})

    visited = []

    def visit(tags, load):
        if tags["name"] != "two":
            visited.append(load().name)

    container.iterate(list[Plugin], visit)

    assert visited == ["one", "three"]
    assert built == ["one", "three"]


def test_iterate_with_tag_filter(container):
    built = []
    for name in ("one", "two"):
        container.provide(plugin_factory(name, built), tags={"name": name})

    seen = []
    container.iterate(list[Plugin], lambda tags, load: seen.append(load().name), tags={"name": "two"})

    assert seen == ["two"]


def test_iterate_reports_failing_index(container):
    for name in ("one", "two"):
        container.provide(plugin_factory(name, []), tags={"name": name})

    def visit(tags, load):
        if tags["name"] == "two":
            raise ValueError("bad plugin")

    with pytest.raises(DependencyError, match=r"list\[Plugin\] with index 1 failed: bad plugin"):
        container.iterate(list[Plugin], visit)


def test_iterate_requires_group(container):
    container.provide_value([Plugin("one")], type_=list[Plugin])

    with pytest.raises(InvocationError, match="groups only"):
        container.iterate(Plugin, lambda tags, load: None)
    with pytest.raises(InvocationError, match="groups only"):
        container.iterate(list[Plugin], lambda tags, load: None)


def test_parent_provides_missing_dependencies():
    parent = Container()
    parent.provide(Server)
    child = Container()
    child.add_parent(parent)
    child.provide(Client)

    client = child.resolve(Client)

    assert client.server is parent.resolve(Server)
    assert child.resolve(Container) is child
    assert not parent.has(Client)


def test_child_providers_shadow_parent():
    parent = Container()
    parent.provide(Server)
    child = Container()
    child.add_parent(parent)
    child.provide(Server)

    assert child.resolve(Server) is not parent.resolve(Server)


def test_parent_values_are_cleaned_up_by_parent():
    events = []

    def make_server() -> tuple[Server, Cleanup]:
        return Server(), lambda: events.append("server")

    parent = Container()
    parent.provide(make_server)
    child = Container()
    child.add_parent(parent)
    child.provide(Client)
    child.resolve(Client)

    child.cleanup()
    assert events == []
    parent.cleanup()
    assert events == ["server"]


def test_parent_ancestry_cycle_is_rejected():
    first = Container()
    second = Container()
    first.add_parent(second)

    with pytest.raises(CycleError, match="creates a cycle"):
        second.add_parent(first)
    with pytest.raises(CycleError, match="creates a cycle"):
        first.add_parent(first)


def test_logging_tracer(caplog):
    with caplog.at_level(logging.DEBUG, logger="vinculum"):
        container = Container(tracer=LoggingTracer())
        container.provide(Server)
        container.resolve(Server)

    assert "Registered ConstructorProvider(Server)" in caplog.text
    assert "Server resolved" in caplog.text


def test_concurrent_resolution_builds_singleton_once(container):
    built = []
    lock = threading.Lock()

    def make_server() -> Server:
        with lock:
            built.append("server")
        time.sleep(0.01)
        return Server()

    container.provide(make_server)

    with ThreadPoolExecutor(max_workers=8) as executor:
        servers = list(executor.map(lambda _: container.resolve(Server), range(16)))

    assert built == ["server"]
    assert all(server is servers[0] for server in servers)


def test_unresolvable_hints_are_registration_errors(container):
    def make_a(b: "Undefined") -> A:
        return A()

    def make_b() -> "Undefined":
        return B()

    with pytest.raises(RegistrationError, match="cannot be resolved"):
        container.provide(make_a)
    with pytest.raises(RegistrationError, match="cannot be resolved"):
        container.provide(make_b)


def test_invoke_rejects_unresolvable_hints(container):
    def handler(b: "Undefined") -> None:
        pass

    with pytest.raises(InvocationError, match="cannot be resolved"):
        container.invoke(handler)


def test_unresolvable_field_hint_on_synthesised_injectable(container):
    class Unresolved(Injectable):
        b: "Undefined" = Inject()

    with pytest.raises(RegistrationError, match="cannot be resolved"):
        container.resolve(Unresolved)


def test_misdeclared_field_is_reported_at_provide(container):
    class Unfinished(Injectable):
        server = Inject()

    def make_unfinished() -> Unfinished:
        return Unfinished()

    with pytest.raises(RegistrationError, match="is not annotated"):
        container.provide(make_unfinished)


def test_failing_rollback_cleanup_keeps_original_error(container, caplog):
    def make_server() -> tuple[Server, Cleanup]:
        def close():
            raise RuntimeError("close failed")

        return Server(), close

    def reject(server):
        raise ValueError("rejected")

    container.provide(make_server, decorators=[reject])

    with caplog.at_level(logging.ERROR, logger="vinculum.resolver"):
        with pytest.raises(ConstructionError, match="Server: ValueError: rejected"):
            container.resolve(Server)
    assert "Cleanup of partially built Server failed" in caplog.text
