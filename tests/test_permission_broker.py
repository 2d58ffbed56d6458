from __future__ import annotations

import asyncio
import threading

from anycowork_runtime.core.contracts import EventCollector
from anycowork_runtime.permissions.broker import (
    AutoApprovePermissionBroker,
    DenyAllPermissionBroker,
    PermissionBroker,
    PermissionGate,
    create_permission_broker,
)
from anycowork_runtime.permissions.types import PermissionRequest, PermissionType


def _req(resource: str = "ls", session: str = "s1") -> PermissionRequest:
    return (
        PermissionRequest(permission_type=PermissionType.SHELL_EXECUTE, message=f"Agent wants to run command: {resource}")
        .with_session_id(session)
        .with_resource(resource)
    )


async def _wait_pending(broker: PermissionBroker, count: int = 1) -> list[str]:
    for _ in range(200):
        ids = broker.list_pending()
        if len(ids) >= count:
            return ids
        await asyncio.sleep(0.005)
    raise AssertionError("permission request never became pending")


def test_cache_key_format() -> None:
    assert _req("ls", "s1").cache_key() == "s1:shell_execute:ls"
    bare = PermissionRequest(permission_type=PermissionType.NETWORK, message="net")
    assert bare.cache_key() == "network:global"
    assert bare.with_session_id("s2").cache_key() == "s2:network:global"


def test_request_blocks_until_resolved_allow() -> None:
    broker = PermissionBroker()

    async def _run() -> bool:
        task = asyncio.create_task(broker.request(_req()))
        ids = await _wait_pending(broker)
        assert broker.get_pending(ids[0]) is not None
        assert broker.resolve(ids[0], True) is True
        return await task

    assert asyncio.run(_run()) is True
    assert broker.list_pending() == []


def test_request_resolved_deny() -> None:
    broker = PermissionBroker()

    async def _run() -> bool:
        task = asyncio.create_task(broker.request(_req()))
        ids = await _wait_pending(broker)
        broker.resolve(ids[0], False)
        return await task

    assert asyncio.run(_run()) is False


def test_resolve_is_one_shot() -> None:
    broker = PermissionBroker()

    async def _run() -> None:
        task = asyncio.create_task(broker.request(_req()))
        ids = await _wait_pending(broker)
        assert broker.resolve(ids[0], True) is True
        assert broker.resolve(ids[0], False) is False
        assert await task is True

    asyncio.run(_run())
    assert broker.resolve("unknown-id", True) is False


def test_resolve_from_another_thread() -> None:
    broker = PermissionBroker()

    async def _run() -> bool:
        task = asyncio.create_task(broker.request(_req()))
        ids = await _wait_pending(broker)
        t = threading.Thread(target=broker.resolve, args=(ids[0], True))
        t.start()
        result = await task
        t.join()
        return result

    assert asyncio.run(_run()) is True


def test_remember_skips_future_prompts_for_same_key() -> None:
    collector = EventCollector()
    broker = PermissionBroker(observer=collector)

    async def _run() -> None:
        task = asyncio.create_task(broker.request(_req("ls")))
        ids = await _wait_pending(broker)
        broker.resolve(ids[0], True, remember=True)
        assert await task is True

        # 同 key：不再挂起、不再发事件
        assert await broker.request(_req("ls")) is True

    asyncio.run(_run())
    assert broker.cache_size() == 1
    assert len(collector.of_type("permission_requested")) == 1
    ev = collector.events[0]
    assert ev.session_id == "s1"
    assert ev.payload["request"]["permission_type"] == "shell_execute"
    assert ev.payload["request"]["metadata"]["resource"] == "ls"


def test_remember_on_deny_is_not_cached() -> None:
    broker = PermissionBroker()

    async def _run() -> None:
        task = asyncio.create_task(broker.request(_req("rm")))
        ids = await _wait_pending(broker)
        broker.resolve(ids[0], False, remember=True)
        assert await task is False

    asyncio.run(_run())
    assert broker.cache_size() == 0


def test_pre_approve_and_clear_session_cache() -> None:
    broker = PermissionBroker()
    broker.pre_approve("s1:shell_execute:ls")
    broker.pre_approve("s2:shell_execute:ls")

    assert asyncio.run(broker.request(_req("ls", "s1"))) is True

    broker.clear_session_cache("s1")
    assert broker.cache_size() == 1
    broker.clear_cache()
    assert broker.cache_size() == 0


def test_list_pending_in_arrival_order() -> None:
    broker = PermissionBroker()

    async def _run() -> None:
        first = _req("a")
        second = _req("b")
        t1 = asyncio.create_task(broker.request(first))
        await _wait_pending(broker, 1)
        t2 = asyncio.create_task(broker.request(second))
        ids = await _wait_pending(broker, 2)
        assert ids == [first.id, second.id]
        broker.resolve(second.id, True)
        broker.resolve(first.id, False)
        assert await t1 is False
        assert await t2 is True

    asyncio.run(_run())


def test_auto_approve_never_blocks() -> None:
    broker = AutoApprovePermissionBroker()
    assert asyncio.run(broker.request(_req())) is True
    assert broker.list_pending() == []


def test_deny_all_denies_unless_pre_approved() -> None:
    broker = DenyAllPermissionBroker()
    assert asyncio.run(broker.request(_req("ls"))) is False
    broker.pre_approve("s1:shell_execute:ls")
    assert asyncio.run(broker.request(_req("ls"))) is True
    assert asyncio.run(broker.request(_req("rm"))) is False


def test_create_permission_broker_by_mode() -> None:
    assert isinstance(create_permission_broker("auto"), AutoApprovePermissionBroker)
    ask = create_permission_broker("ask")
    assert isinstance(ask, PermissionBroker)
    assert isinstance(ask, PermissionGate)
