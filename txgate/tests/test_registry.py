from __future__ import annotations

import unittest
from typing import Any

from txgate.context import RequestContext
from txgate.responses import ErrorKind, Response, success
from txgate.security import DuplicateTxError, HandlerSpec, RegistryNotReadyError, SecurityRegistry


class DummyDatabase:
    def __init__(self, permissions: list[dict[str, Any]], tx_rows: list[dict[str, Any]], fail: bool = False):
        self.results = {"load_permissions": permissions, "load_data_tx": tx_rows}
        self.fail = fail
        self.calls: list[str] = []

    async def execute(self, schema: str, query_name: str, params: Any = None) -> list[dict[str, Any]]:
        self.calls.append(query_name)
        if self.fail:
            raise ConnectionError("database unreachable")
        return self.results[query_name]


class DummyOrders:
    instances = 0

    def __init__(self) -> None:
        DummyOrders.instances += 1

    async def create(self, params: Any, request: RequestContext) -> Response:
        return success("created", {"echo": params})

    async def explode(self, params: Any, request: RequestContext) -> Response:
        raise RuntimeError("boom token=abcdef")

    async def internal(self, params: Any, request: RequestContext) -> Response:
        return success("should never run")


PERMISSIONS = [
    {"profile_id": 1, "method_name": "create", "object_name": "Orders"},
    {"profile_id": 2, "method_name": "create", "object_name": "Orders"},
]
TX_ROWS = [
    {"tx": 10, "object_name": "Orders", "method_name": "create"},
    {"tx": "11", "object_name": "Orders", "method_name": "explode"},
    {"tx": "not-a-number", "object_name": "Orders", "method_name": "internal"},
]


def make_registry(database: DummyDatabase) -> SecurityRegistry:
    handlers = {"Orders": HandlerSpec(factory=DummyOrders, methods=frozenset({"create", "explode"}))}
    return SecurityRegistry(database, handlers)


class SecurityRegistryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        DummyOrders.instances = 0
        self.database = DummyDatabase(PERMISSIONS, TX_ROWS)
        self.registry = make_registry(self.database)
        self.registry.start()
        await self.registry.ready()

    async def test_ready_state(self) -> None:
        self.assertTrue(self.registry.is_ready)
        self.assertIsNone(self.registry.init_error)
        self.assertEqual(sorted(self.database.calls), ["load_data_tx", "load_permissions"])

    async def test_authorize_is_default_deny(self) -> None:
        self.assertTrue(self.registry.authorize(1, "create", "Orders"))
        self.assertTrue(self.registry.authorize("2", "create", "Orders"))
        self.assertFalse(self.registry.authorize(3, "create", "Orders"))
        self.assertFalse(self.registry.authorize(1, "explode", "Orders"))
        self.assertFalse(self.registry.authorize(1, "create", "Invoices"))
        self.assertFalse(self.registry.authorize(None, "create", "Orders"))
        self.assertFalse(self.registry.authorize("admin", "create", "Orders"))

    async def test_resolve_tx(self) -> None:
        target = self.registry.resolve_tx(10)
        self.assertEqual((target.object_name, target.method_name), ("Orders", "create"))
        self.assertEqual(self.registry.resolve_tx("11").method_name, "explode")
        self.assertEqual(self.registry.resolve_tx(" 10 ").tx, 10)
        for unknown in (99, "abc", None, 10.5, True, "-10"):
            with self.subTest(tx=unknown):
                self.assertIsNone(self.registry.resolve_tx(unknown))

    async def test_non_integer_tx_rows_are_skipped(self) -> None:
        self.assertIsNone(self.registry.resolve_tx("not-a-number"))

    async def test_dispatch_caches_handler_instance(self) -> None:
        request = RequestContext()
        first = await self.registry.dispatch("Orders", "create", {"qty": 1}, request)
        second = await self.registry.dispatch("Orders", "create", {"qty": 2}, request)
        self.assertEqual(first.code, 200)
        self.assertEqual(second.data, {"echo": {"qty": 2}})
        self.assertEqual(DummyOrders.instances, 1)

    async def test_dispatch_failures_become_server_error(self) -> None:
        request = RequestContext()
        expected = ErrorKind.SERVER_ERROR.status
        with self.assertLogs("txgate.security", level="ERROR") as logs:
            raised = await self.registry.dispatch("Orders", "explode", {}, request)
        self.assertEqual(raised.code, expected)
        self.assertNotIn("abcdef", "\n".join(logs.output))
        self.assertIn("Orders", "\n".join(logs.output))

        hidden = await self.registry.dispatch("Orders", "internal", {}, request)
        missing = await self.registry.dispatch("Invoices", "create", {}, request)
        self.assertEqual(hidden.code, expected)
        self.assertEqual(missing.code, expected)
        self.assertEqual(missing.message, ErrorKind.SERVER_ERROR.message)


class RegistryStartupTests(unittest.IsolatedAsyncioTestCase):
    async def test_ready_before_start_raises(self) -> None:
        registry = make_registry(DummyDatabase(PERMISSIONS, TX_ROWS))
        with self.assertRaises(RegistryNotReadyError):
            await registry.ready()
        self.assertFalse(registry.is_ready)

    async def test_duplicate_tx_rejects_readiness(self) -> None:
        rows = TX_ROWS + [{"tx": 10, "object_name": "Orders", "method_name": "explode"}]
        registry = make_registry(DummyDatabase(PERMISSIONS, rows))
        registry.start()
        with self.assertRaises(DuplicateTxError):
            await registry.ready()
        self.assertFalse(registry.is_ready)
        self.assertIsInstance(registry.init_error, DuplicateTxError)

    async def test_load_failure_is_cached(self) -> None:
        database = DummyDatabase(PERMISSIONS, TX_ROWS, fail=True)
        registry = make_registry(database)
        registry.start()
        for _ in range(3):
            with self.assertRaises(ConnectionError):
                await registry.ready()
        registry.start()
        with self.assertRaises(ConnectionError):
            await registry.ready()
        self.assertEqual(len(database.calls), 2)
        self.assertFalse(registry.authorize(1, "create", "Orders"))


if __name__ == "__main__":
    unittest.main()
