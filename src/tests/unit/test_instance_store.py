"""Tests for InstanceStore against a real SQLite database."""

import asyncio

import pytest

from giftmgr.core.errors import ConflictError, InstanceNotFoundError
from giftmgr.core.models import InstanceStatus, LogLevel


class TestCreate:
    async def test_new_instance_is_stopped_without_container(self, store, payload) -> None:
        instance = await store.create(payload("alpha", 3000))

        assert instance.id
        assert instance.status == InstanceStatus.STOPPED
        assert instance.container_id is None
        assert instance.created_at is not None

    async def test_caller_cannot_preset_status_or_container(self, store, payload) -> None:
        instance = await store.create(
            payload("alpha", 3000, status="running", container_id="c9")
        )

        assert instance.status == InstanceStatus.STOPPED
        assert instance.container_id is None

    async def test_port_conflict_names_existing_instance(self, store, payload) -> None:
        await store.create(payload("A", 3000))

        with pytest.raises(ConflictError) as exc_info:
            await store.create(payload("B", 3000))

        assert exc_info.value.instance_name == "A"
        assert exc_info.value.message == "Port 3000 is already in use by instance: A"

    async def test_name_conflict(self, store, payload) -> None:
        await store.create(payload("alpha", 3000))

        with pytest.raises(ConflictError) as exc_info:
            await store.create(payload("alpha", 3001))

        assert exc_info.value.instance_name == "alpha"

    async def test_concurrent_colliding_port_yields_one_winner(self, store, payload) -> None:
        results = await asyncio.gather(
            store.create(payload("one", 3005)),
            store.create(payload("two", 3005)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert conflicts[0].instance_name == created[0].name
        assert len(await store.list_all()) == 1


class TestRead:
    async def test_get_missing_raises(self, store) -> None:
        with pytest.raises(InstanceNotFoundError):
            await store.get("missing")

    async def test_lookups(self, make_instance, store) -> None:
        instance = await make_instance("alpha", 3000)
        await store.update_container_id(instance.id, "c1")

        assert (await store.find_by_name("alpha")).id == instance.id
        assert (await store.find_by_port(3000)).id == instance.id
        assert (await store.find_by_container_id("c1")).id == instance.id
        assert await store.find_by_name("nobody") is None
        assert await store.find_by_id("missing") is None

    async def test_list_newest_first(self, make_instance, store) -> None:
        first = await make_instance("first", 3000)
        second = await make_instance("second", 3001)
        third = await make_instance("third", 3002)

        listed = await store.list_all()

        assert [i.id for i in listed] == [third.id, second.id, first.id]

    async def test_used_ports_sorted(self, make_instance, store) -> None:
        await make_instance("b", 3002)
        await make_instance("a", 3000)

        assert await store.used_ports() == [3000, 3002]


class TestUpdate:
    async def test_partial_update_ignores_id(self, make_instance, store) -> None:
        instance = await make_instance("alpha", 3000)

        updated = await store.update(
            instance.id, {"id": "hijack", "tiktok_username": "@new"}
        )

        assert updated.id == instance.id
        assert updated.tiktok_username == "@new"
        assert updated.api_key == instance.api_key

    async def test_keeping_own_port_is_not_a_conflict(self, make_instance, store) -> None:
        instance = await make_instance("alpha", 3000)

        updated = await store.update(instance.id, {"port": 3000, "name": "alpha"})

        assert updated.port == 3000

    async def test_port_taken_by_other_instance(self, make_instance, store) -> None:
        await make_instance("A", 3000)
        b = await make_instance("B", 3001)

        with pytest.raises(ConflictError, match="instance: A"):
            await store.update(b.id, {"port": 3000})

        assert (await store.get(b.id)).port == 3001

    async def test_update_missing_raises(self, store) -> None:
        with pytest.raises(InstanceNotFoundError):
            await store.update("missing", {"name": "x"})

    async def test_mark_started_and_stopped(self, make_instance, store) -> None:
        instance = await make_instance()

        started = await store.mark_started(instance.id)
        assert started.status == InstanceStatus.RUNNING
        assert started.last_started_at is not None

        stopped = await store.mark_stopped(instance.id)
        assert stopped.status == InstanceStatus.STOPPED
        assert stopped.last_stopped_at is not None

    async def test_update_status_and_container(self, make_instance, store) -> None:
        instance = await make_instance()

        await store.update_status(instance.id, InstanceStatus.RUNNING)
        await store.update_container_id(instance.id, "c1")
        reloaded = await store.get(instance.id)
        assert reloaded.status == InstanceStatus.RUNNING
        assert reloaded.container_id == "c1"

        cleared = await store.update_container_id(instance.id, None)
        assert cleared.container_id is None


class TestDelete:
    async def test_delete_removes_record(self, make_instance, store) -> None:
        instance = await make_instance()

        await store.delete(instance.id)

        assert await store.find_by_id(instance.id) is None

    async def test_delete_missing_raises(self, store) -> None:
        with pytest.raises(InstanceNotFoundError):
            await store.delete("missing")

    async def test_delete_cascades_audit_entries(self, make_instance, store, audit) -> None:
        instance = await make_instance()
        await audit.add(instance.id, LogLevel.INFO, "Instance created")

        await store.delete(instance.id)

        assert await audit.list_for_instance(instance.id) == []

    async def test_deleted_port_and_name_are_reusable(self, make_instance, store) -> None:
        instance = await make_instance("alpha", 3000)
        await store.delete(instance.id)

        again = await make_instance("alpha", 3000)
        assert again.id != instance.id
