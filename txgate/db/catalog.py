from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.sql import Executable


class UnknownQueryError(LookupError):
    pass


class QueryArityError(ValueError):
    pass


@dataclass(frozen=True)
class NamedQuery:
    schema: str
    name: str
    arity: int
    build: Callable[..., Executable]

    def bind(self, params: list[Any]) -> Executable:
        if len(params) != self.arity:
            raise QueryArityError(
                f"{self.schema}.{self.name} expects {self.arity} params, got {len(params)}"
            )
        return self.build(*params)


QUERY_CATALOG: dict[str, dict[str, NamedQuery]] = {}


def named_query(schema: str) -> Callable[[Callable[..., Executable]], Callable[..., Executable]]:
    """Register a statement builder under ``schema``; its arity is its parameter count."""

    def decorator(fn: Callable[..., Executable]) -> Callable[..., Executable]:
        arity = len(inspect.signature(fn).parameters)
        queries = QUERY_CATALOG.setdefault(schema, {})
        if fn.__name__ in queries:
            raise ValueError(f"Duplicate query registration: {schema}.{fn.__name__}")
        queries[fn.__name__] = NamedQuery(schema=schema, name=fn.__name__, arity=arity, build=fn)
        return fn

    return decorator


def lookup_query(catalog: dict[str, dict[str, NamedQuery]], schema: str, name: str) -> NamedQuery:
    query = catalog.get(schema, {}).get(name)
    if query is None:
        raise UnknownQueryError(f"Unknown query: {schema}.{name}")
    return query
