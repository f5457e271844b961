"""
Abstract base class for fixture sources.
A source turns one resource name into raw fixture rows; validation happens
once, in the orchestrator.
"""
from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, Union

from shared.models.domain import RawFixtureRecord
from shared.models.enums import Resource

RawRow = Union[RawFixtureRecord, Mapping[str, Any]]
FetchFn = Callable[[str], Awaitable[Sequence[RawRow]]]


class FixtureSource(abc.ABC):
    """
    One upstream provider of fixture rows (a scraper, a feed, a fixture file).

    Subclasses implement fetch(); start()/close() manage any long-lived client.
    """

    def __init__(self, name: str, resources: Iterable[str] = (Resource.FIXTURES.value,)) -> None:
        self._name = name
        self._resources = frozenset(resources)

    @property
    def name(self) -> str:
        return self._name

    def serves(self, resource: str) -> bool:
        return resource in self._resources

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abc.abstractmethod
    async def fetch(self, resource: str) -> Sequence[RawRow]:
        """Return raw rows for the resource, or raise on failure."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r})"


class CallableSource(FixtureSource):
    """Adapts a plain async scraper function `fn(resource) -> rows`."""

    def __init__(self, name: str, fn: FetchFn, resources: Iterable[str] = (Resource.FIXTURES.value,)) -> None:
        super().__init__(name, resources)
        self._fn = fn

    async def fetch(self, resource: str) -> Sequence[RawRow]:
        return await self._fn(resource)
