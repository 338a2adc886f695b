"""
Data store registry.

A content pipeline selects its data store by a short symbolic name in
its own configuration ("s3"). Data store modules register a factory
under that name; the pipeline builds one with create_datastore().
"""

import logging
from typing import Any, Callable, TypeVar

from .exceptions import UnknownDataStore

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_DATASTORES: dict[str, Callable[..., Any]] = {}


def register_datastore(name: str, replace: bool = False) -> Callable[[F], F]:
    """
    Decorator registering a data store factory (a class or a function).

    Raises:
        ValueError: If the name is taken and replace is False
    """
    def decorator(factory: F) -> F:
        if name in _DATASTORES and not replace:
            raise ValueError(f"A data store is already registered as {name!r}")
        _DATASTORES[name] = factory
        logger.debug(
            "Registered data store",
            extra={"datastore": name, "factory": getattr(factory, "__name__", repr(factory))},
        )
        return factory

    return decorator


def unregister_datastore(name: str) -> None:
    _DATASTORES.pop(name, None)


def get_datastore_factory(name: str) -> Callable[..., Any]:
    try:
        return _DATASTORES[name]
    except KeyError:
        raise UnknownDataStore(
            f"No data store registered as {name!r}. "
            f"Available: {', '.join(sorted(_DATASTORES)) or 'none'}"
        ) from None


def create_datastore(name: str, **options: Any) -> Any:
    """Build the data store registered under ``name`` with the given options."""
    return get_datastore_factory(name)(**options)


def list_datastores() -> list[str]:
    return sorted(_DATASTORES)
