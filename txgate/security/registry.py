"""Permission cache, tx routing table and handler dispatch.

Both maps are filled once by :meth:`SecurityRegistry.start` and only read
afterwards. A failed load is cached: every later ``ready()`` re-raises it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from txgate.context import RequestContext
from txgate.db import Database
from txgate.db.queries import SECURITY
from txgate.responses import ErrorKind, Response, failure
from txgate.utils.sanitize import redact_secrets_in_string


class DuplicateTxError(ValueError):
    pass


class RegistryNotReadyError(RuntimeError):
    pass


@dataclass(frozen=True)
class TxTarget:
    tx: int
    object_name: str
    method_name: str


@dataclass(frozen=True)
class HandlerSpec:
    factory: Callable[[], Any]
    methods: frozenset[str]


def _coerce_tx(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
    return None


class SecurityRegistry:
    def __init__(
        self,
        database: Database,
        handlers: Mapping[str, HandlerSpec],
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.handlers = dict(handlers)
        self.logger = logger or logging.getLogger("txgate.security")
        self._permissions: frozenset[tuple[int, str, str]] = frozenset()
        self._tx_map: dict[int, TxTarget] = {}
        self._instances: dict[str, Any] = {}
        self._load_task: asyncio.Task | None = None

    # readiness

    def start(self) -> asyncio.Task:
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
            self._load_task.add_done_callback(self._report_load)
        return self._load_task

    async def ready(self) -> None:
        if self._load_task is None:
            raise RegistryNotReadyError("SecurityRegistry.start() has not been called")
        await asyncio.shield(self._load_task)

    @property
    def is_ready(self) -> bool:
        task = self._load_task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    @property
    def init_error(self) -> BaseException | None:
        task = self._load_task
        if task is None or not task.done():
            return None
        if task.cancelled():
            return asyncio.CancelledError()
        return task.exception()

    def _report_load(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self.logger.error("Security registry load was cancelled")
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Security registry failed to load: %s", redact_secrets_in_string(error))
        else:
            self.logger.info(
                "Security registry ready: %s grants, %s transactions", len(self._permissions), len(self._tx_map)
            )

    async def _load(self) -> None:
        permissions, tx_map = await asyncio.gather(self._load_permissions(), self._load_tx())
        self._permissions = permissions
        self._tx_map = tx_map

    async def _load_permissions(self) -> frozenset[tuple[int, str, str]]:
        rows = await self.database.execute(SECURITY, "load_permissions")
        return frozenset((int(row["profile_id"]), row["method_name"], row["object_name"]) for row in rows)

    async def _load_tx(self) -> dict[int, TxTarget]:
        rows = await self.database.execute(SECURITY, "load_data_tx")
        tx_map: dict[int, TxTarget] = {}
        for row in rows:
            tx = _coerce_tx(row["tx"])
            if tx is None:
                self.logger.warning("Skipping non-integer tx %r for %s.%s", row["tx"], row["object_name"], row["method_name"])
                continue
            if tx in tx_map:
                existing = tx_map[tx]
                raise DuplicateTxError(
                    f"tx {tx} maps to both {existing.object_name}.{existing.method_name} "
                    f"and {row['object_name']}.{row['method_name']}"
                )
            tx_map[tx] = TxTarget(tx=tx, object_name=row["object_name"], method_name=row["method_name"])
        return tx_map

    # lookups

    def authorize(self, profile_id: Any, method_name: str, object_name: str) -> bool:
        try:
            return (int(profile_id), str(method_name), str(object_name)) in self._permissions
        except (TypeError, ValueError):
            return False

    def resolve_tx(self, tx: Any) -> TxTarget | None:
        key = _coerce_tx(tx)
        if key is None:
            return None
        return self._tx_map.get(key)

    # dispatch

    async def dispatch(
        self,
        object_name: str,
        method_name: str,
        params: Any,
        request: RequestContext,
    ) -> Response:
        path = f"handlers[{object_name!r}].{method_name}"
        try:
            spec = self.handlers.get(object_name)
            if spec is None:
                raise LookupError(f"No handler registered for object {object_name!r}")
            if method_name not in spec.methods:
                raise LookupError(f"Method {method_name!r} is not exposed by {object_name!r}")
            instance = self._instances.get(object_name)
            if instance is None:
                instance = self._instances.setdefault(object_name, spec.factory())
            method = getattr(instance, method_name)
            return await method(params, request)
        except Exception as exc:
            self.logger.error(
                "Dispatch failed object=%s method=%s path=%s: %s",
                object_name,
                method_name,
                path,
                redact_secrets_in_string(exc),
            )
            return failure(ErrorKind.SERVER_ERROR)
