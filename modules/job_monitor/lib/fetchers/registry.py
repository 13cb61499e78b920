from __future__ import annotations

from collections.abc import Callable

from .base import PostingFetcher

FetcherFactory = Callable[[], PostingFetcher]

# Global in-process registry: method name -> zero-arg factory
_REGISTRY: dict[str, FetcherFactory] = {}


def register(method: str) -> Callable[[FetcherFactory], FetcherFactory]:
    """
    Decorator registering a fetcher factory (usually the class itself) under a
    method name. Re-registering the same factory is a no-op; a different one
    under a taken name is rejected.
    """
    key = (method or "").strip().lower()
    if not key:
        raise ValueError("Cannot register fetcher: empty method name.")

    def _decorate(factory: FetcherFactory) -> FetcherFactory:
        if key in _REGISTRY and _REGISTRY[key] is not factory:
            raise ValueError(f"Fetch method {key!r} already registered to {_REGISTRY[key]!r}.")
        _REGISTRY[key] = factory
        return factory

    return _decorate


def get(method: str) -> FetcherFactory:
    """
    Look up a fetcher factory by method (case-insensitive).
    Raises KeyError if not found.
    """
    key = (method or "").strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"No fetcher registered for method {method!r}.")
    return _REGISTRY[key]


def create(method: str) -> PostingFetcher:
    return get(method)()


def available() -> list[str]:
    """Registered method names, importing the built-in backends first."""
    from . import browser_fetcher, http_fetcher, static_fetcher  # noqa: F401

    return sorted(_REGISTRY)
