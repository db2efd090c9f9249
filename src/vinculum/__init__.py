"""Vinculum dependency injection container.

Vinculum builds object graphs lazily from registered factories. Factories
declare what they need through ordinary type hints; the container resolves
those needs recursively on first request, checks the graph for cycles before
building anything, keeps singletons, and tears built resources down in
reverse order of construction.

Key Features:
    - Constructors returning a value, a value with a cleanup, or a generator
    - Named and tagged providers, with ``"*"`` tag wildcards
    - Interface aliases and ``list[T]`` groups that follow later registrations
    - Singleton and prototype providers
    - Field injection into :class:`~vinculum.inject.Injectable` classes
    - Cycle detection before construction
    - Parent containers for layered scopes

Basic Usage:
    >>> from vinculum.container import Container
    >>>
    >>> container = Container()
    >>>
    >>> @container.provides()
    ... def make_database(config: Config) -> Database:
    ...     return Database(config.url)
    >>>
    >>> container.provide_value(Config(url="sqlite://"))
    >>> db = container.resolve(Database)

The package consists of several modules:
    - container: The public :class:`Container` entry point
    - registry: Provider registration and lookup
    - providers: The provider variants and constructor inspection
    - resolver: Recursive construction of values
    - graph: Cycle detection over provider graphs
    - lifecycle: Singleton cache and cleanup stack
    - inject: Dependency declarations on parameters and fields
    - domain: Core models (Identity, Parameter)
    - options: Option structures for registration and lookup
    - tracing: Observers of container activity
    - errors: Framework-specific exceptions
"""
