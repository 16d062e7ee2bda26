"""Tests for InstanceMonitor read operations."""

import pytest

from giftmgr.core.errors import ContainerNotFoundError, ContainerRuntimeError, ErrorCode
from giftmgr.core.interfaces import ContainerState, ContainerStats
from giftmgr.services.monitor import InstanceMonitor


@pytest.fixture
def monitor(store, mock_driver, audit) -> InstanceMonitor:
    return InstanceMonitor(store, mock_driver, audit)


class TestInstances:
    async def test_list_enriches_with_runtime_status(
        self, monitor, mock_driver, store, make_instance
    ) -> None:
        a = await make_instance("a", 3000)
        b = await make_instance("b", 3001)
        c = await make_instance("c", 3002)
        d = await make_instance("d", 3003)
        await store.update_container_id(b.id, "cb")
        await store.update_container_id(c.id, "cc")
        await store.update_container_id(d.id, "cd")

        async def inspect(container_id: str) -> ContainerState:
            if container_id == "cb":
                return ContainerState(running=True, status="running")
            if container_id == "cc":
                raise ContainerNotFoundError()
            raise ContainerRuntimeError("daemon down")

        mock_driver.inspect_status.side_effect = inspect

        result = await monitor.list_instances()

        views = {view["id"]: view for view in result.data}
        assert views[a.id]["docker_status"] == "no-container"
        assert views[b.id]["docker_status"] == "running"
        assert views[b.id]["is_running"] is True
        assert views[c.id]["docker_status"] == "not-found"
        assert views[d.id]["docker_status"] == "error"
        assert "api_key" not in views[a.id]
        assert "dash_password" not in views[a.id]

    async def test_get_unknown(self, monitor) -> None:
        result = await monitor.get_instance("missing")

        assert result.error_code == ErrorCode.INSTANCE_NOT_FOUND

    async def test_get(self, monitor, make_instance) -> None:
        instance = await make_instance("a", 3000)

        result = await monitor.get_instance(instance.id)

        assert result.success
        assert result.data["name"] == "a"
        assert result.data["port"] == 3000


class TestLogsAndStats:
    async def test_logs_without_container(self, monitor, mock_driver, make_instance) -> None:
        instance = await make_instance("a", 3000)

        result = await monitor.fetch_logs(instance.id)

        assert result.error_code == ErrorCode.CONTAINER_NOT_FOUND
        mock_driver.fetch_logs.assert_not_called()

    async def test_logs(self, monitor, mock_driver, store, make_instance) -> None:
        instance = await make_instance("a", 3000)
        await store.update_container_id(instance.id, "c1")
        mock_driver.fetch_logs.return_value = ["line 1", "line 2"]

        result = await monitor.fetch_logs(instance.id, tail=20)

        assert result.data == {"logs": ["line 1", "line 2"], "tail": 20}
        mock_driver.fetch_logs.assert_awaited_once_with("c1", tail=20)

    async def test_stats(self, monitor, mock_driver, store, make_instance) -> None:
        instance = await make_instance("a", 3000)
        await store.update_container_id(instance.id, "c1")
        mock_driver.fetch_stats.return_value = ContainerStats(
            cpu_percent=12.5,
            memory_usage_bytes=100,
            memory_limit_bytes=400,
            memory_percent=25.0,
        )

        result = await monitor.fetch_stats(instance.id)

        assert result.data["cpu_percent"] == 12.5
        assert result.data["memory_percent"] == 25.0

    async def test_stats_runtime_error(self, monitor, mock_driver, store, make_instance) -> None:
        instance = await make_instance("a", 3000)
        await store.update_container_id(instance.id, "c1")
        mock_driver.fetch_stats.side_effect = ContainerRuntimeError("not running")

        result = await monitor.fetch_stats(instance.id)

        assert result.error_code == ErrorCode.RUNTIME_ERROR


class TestEvents:
    async def test_events_newest_first(self, monitor, audit, make_instance) -> None:
        instance = await make_instance("a", 3000)
        await audit.add(instance.id, "info", "first")
        await audit.add(instance.id, "error", "second", {"error_code": "RUNTIME_ERROR"})

        result = await monitor.instance_events(instance.id)

        assert [e["message"] for e in result.data] == ["second", "first"]
        assert result.data[0]["details"] == {"error_code": "RUNTIME_ERROR"}
        assert result.data[1]["details"] is None

    async def test_events_unknown_instance(self, monitor) -> None:
        result = await monitor.instance_events("missing")

        assert result.error_code == ErrorCode.INSTANCE_NOT_FOUND


class TestDocker:
    async def test_available_images(self, monitor, mock_driver) -> None:
        mock_driver.list_images.return_value = [{"image": "gift-tracker:latest"}]

        result = await monitor.available_images()

        assert result.data == [{"image": "gift-tracker:latest"}]

    async def test_available_images_runtime_error(self, monitor, mock_driver) -> None:
        mock_driver.list_images.side_effect = ContainerRuntimeError("refused")

        result = await monitor.available_images()

        assert result.error_code == ErrorCode.RUNTIME_ERROR

    async def test_ping(self, monitor) -> None:
        result = await monitor.docker_ping()

        assert result.success
        assert result.data == {"connected": True}

    async def test_ping_failed(self, monitor, mock_driver) -> None:
        mock_driver.ping.return_value = False

        result = await monitor.docker_ping()

        assert not result.success
        assert result.data == {"connected": False}

    async def test_info_error(self, monitor, mock_driver) -> None:
        mock_driver.info.side_effect = ContainerRuntimeError("refused")

        result = await monitor.docker_info()

        assert result.error_code == ErrorCode.RUNTIME_ERROR
