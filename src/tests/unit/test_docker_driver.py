"""Tests for DockerContainerDriver over a mocked Docker Engine API."""

import json

import httpx
import pytest

from giftmgr.adapters.runtime.docker import (
    DockerContainerDriver,
    calculate_cpu_percent,
    calculate_memory,
    clean_log_lines,
    demux_log_stream,
    image_repository,
)
from giftmgr.app.config import DockerConfig, TrackerConfig
from giftmgr.core.errors import ContainerNotFoundError, ContainerRuntimeError
from giftmgr.core.interfaces import ContainerSpec
from giftmgr.infra.docker import DockerClient


class FakeDocker:
    """Records requests and answers from a route table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response | Exception] = {}

    def on(self, method: str, path: str, response: httpx.Response | Exception) -> None:
        self.routes[(method, path)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get((request.method, request.url.path))
        if answer is None:
            return httpx.Response(404, json={"message": "page not found"})
        if isinstance(answer, Exception):
            raise answer
        return answer

    def last(self, method: str, path: str) -> httpx.Request:
        return [r for r in self.requests if r.method == method and r.url.path == path][-1]


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def driver(docker: FakeDocker) -> DockerContainerDriver:
    client = DockerClient(DockerConfig(api_timeout=5.0), transport=httpx.MockTransport(docker))
    return DockerContainerDriver(client, TrackerConfig())


@pytest.fixture
def spec() -> ContainerSpec:
    return ContainerSpec(
        instance_id="01INST",
        instance_name="alpha",
        image="gift-tracker:latest",
        host_port=3005,
        env={"API_KEY": "k", "PORT": "3000", "NODE_ENV": "production"},
        labels={"app": "gift-tracker", "instance.id": "01INST"},
    )


def frame(stream: int, payload: bytes) -> bytes:
    return bytes([stream, 0, 0, 0]) + len(payload).to_bytes(4, "big") + payload


class TestCreateContainer:
    async def test_create_payload(self, driver, docker, spec) -> None:
        docker.on("GET", "/images/gift-tracker:latest/json", httpx.Response(200, json={}))
        docker.on("POST", "/containers/create", httpx.Response(201, json={"Id": "abc123"}))

        container_id = await driver.create_container(spec)

        assert container_id == "abc123"
        request = docker.last("POST", "/containers/create")
        assert request.url.params["name"] == "gift-tracker-alpha"
        body = json.loads(request.content)
        assert body["Image"] == "gift-tracker:latest"
        assert body["ExposedPorts"] == {"3000/tcp": {}}
        assert "API_KEY=k" in body["Env"]
        assert body["Labels"]["app"] == "gift-tracker"
        host_config = body["HostConfig"]
        assert host_config["PortBindings"] == {"3000/tcp": [{"HostPort": "3005"}]}
        assert host_config["RestartPolicy"] == {"Name": "unless-stopped"}
        assert host_config["Memory"] == 256 * 1024 * 1024
        assert host_config["MemorySwap"] == 512 * 1024 * 1024

    async def test_missing_image(self, driver, docker, spec) -> None:
        docker.on(
            "GET",
            "/images/gift-tracker:latest/json",
            httpx.Response(404, json={"message": "no such image"}),
        )

        with pytest.raises(ContainerRuntimeError, match="Please build it first"):
            await driver.create_container(spec)

    async def test_name_conflict_is_runtime_error(self, driver, docker, spec) -> None:
        docker.on("GET", "/images/gift-tracker:latest/json", httpx.Response(200, json={}))
        docker.on(
            "POST",
            "/containers/create",
            httpx.Response(409, json={"message": "Conflict. The container name is in use"}),
        )

        with pytest.raises(ContainerRuntimeError, match="name is in use"):
            await driver.create_container(spec)


class TestImages:
    async def test_image_check_server_error_is_runtime_error(
        self, driver, docker, spec
    ) -> None:
        docker.on(
            "GET",
            "/images/gift-tracker:latest/json",
            httpx.Response(500, json={"message": "storage driver failure"}),
        )

        with pytest.raises(ContainerRuntimeError, match="storage driver failure"):
            await driver.create_container(spec)
        assert not [r for r in docker.requests if r.url.path == "/containers/create"]

    async def test_list_images_filters_tracker_repository(self, driver, docker) -> None:
        docker.on(
            "GET",
            "/images/json",
            httpx.Response(
                200,
                json=[
                    {
                        "Id": "sha256:old",
                        "RepoTags": ["gift-tracker:v1"],
                        "Created": 100,
                        "Size": 10,
                    },
                    {
                        "Id": "sha256:new",
                        "RepoTags": ["gift-tracker:latest", "gift-tracker-dev:latest"],
                        "Created": 200,
                        "Size": 20,
                    },
                    {"Id": "sha256:dangling", "RepoTags": None, "Created": 300},
                ],
            ),
        )

        images = await driver.list_images()

        assert [i["image"] for i in images] == ["gift-tracker:latest", "gift-tracker:v1"]
        assert images[0]["id"] == "sha256:new"
        assert images[0]["size"] == 20
        filters = json.loads(docker.last("GET", "/images/json").url.params["filters"])
        assert filters == {"reference": ["gift-tracker"]}

    @pytest.mark.parametrize(
        ("ref", "repository"),
        [
            ("gift-tracker:latest", "gift-tracker"),
            ("gift-tracker", "gift-tracker"),
            ("registry:5000/gift-tracker:v2", "registry:5000/gift-tracker"),
            ("registry:5000/gift-tracker", "registry:5000/gift-tracker"),
        ],
    )
    def test_image_repository(self, ref: str, repository: str) -> None:
        assert image_repository(ref) == repository


class TestLifecycleCalls:
    async def test_inspect_running(self, driver, docker) -> None:
        docker.on(
            "GET",
            "/containers/c1/json",
            httpx.Response(
                200,
                json={
                    "State": {
                        "Running": True,
                        "Status": "running",
                        "StartedAt": "2024-01-01T00:00:00Z",
                    }
                },
            ),
        )

        state = await driver.inspect_status("c1")

        assert state.running is True
        assert state.status == "running"
        assert state.started_at == "2024-01-01T00:00:00Z"

    async def test_inspect_missing(self, driver) -> None:
        with pytest.raises(ContainerNotFoundError):
            await driver.inspect_status("gone")

    async def test_stop_passes_grace_period(self, driver, docker) -> None:
        docker.on("POST", "/containers/c1/stop", httpx.Response(204))

        await driver.stop("c1", grace_period=10)

        assert docker.last("POST", "/containers/c1/stop").url.params["t"] == "10"

    async def test_stop_already_stopped(self, driver, docker) -> None:
        docker.on("POST", "/containers/c1/stop", httpx.Response(304))

        await driver.stop("c1", grace_period=10)

    async def test_stop_missing(self, driver, docker) -> None:
        docker.on("POST", "/containers/c1/stop", httpx.Response(404, json={"message": "x"}))

        with pytest.raises(ContainerNotFoundError):
            await driver.stop("c1", grace_period=10)

    async def test_restart(self, driver, docker) -> None:
        docker.on("POST", "/containers/c1/restart", httpx.Response(204))

        await driver.restart("c1", grace_period=10)

        assert docker.last("POST", "/containers/c1/restart").url.params["t"] == "10"

    async def test_remove_force(self, driver, docker) -> None:
        docker.on("DELETE", "/containers/c1", httpx.Response(204))

        await driver.remove("c1", force=True)

        assert docker.last("DELETE", "/containers/c1").url.params["force"] == "true"

    async def test_remove_missing(self, driver) -> None:
        with pytest.raises(ContainerNotFoundError):
            await driver.remove("gone", force=True)

    async def test_server_error_carries_docker_message(self, driver, docker) -> None:
        docker.on(
            "POST",
            "/containers/c1/start",
            httpx.Response(500, json={"message": "port is already allocated"}),
        )

        with pytest.raises(ContainerRuntimeError, match="port is already allocated"):
            await driver.start("c1")

    async def test_transport_error(self, driver, docker) -> None:
        docker.on("POST", "/containers/c1/start", httpx.ConnectError("socket gone"))

        with pytest.raises(ContainerRuntimeError, match="start failed"):
            await driver.start("c1")


class TestLogs:
    def test_demux_multiplexed(self) -> None:
        raw = frame(1, b"hello\n") + frame(2, b"oops\n")
        assert demux_log_stream(raw) == "hello\noops\n"

    def test_tty_stream_passthrough(self) -> None:
        assert demux_log_stream(b"plain text\n") == "plain text\n"

    def test_clean_lines(self) -> None:
        text = "first\r\n\x1b[32mcolored\x1b[0m\n\n   \nlast\x07\n"
        assert clean_log_lines(text) == ["first", "[32mcolored[0m", "last"]

    async def test_fetch_logs(self, driver, docker) -> None:
        docker.on(
            "GET",
            "/containers/c1/logs",
            httpx.Response(200, content=frame(1, b"2024-01-01T00:00:00Z ready\n\n")),
        )

        lines = await driver.fetch_logs("c1", tail=50)

        assert lines == ["2024-01-01T00:00:00Z ready"]
        params = docker.last("GET", "/containers/c1/logs").url.params
        assert params["tail"] == "50"
        assert params["timestamps"] == "true"


class TestStats:
    def test_cpu_percent(self) -> None:
        stats = {
            "cpu_stats": {
                "cpu_usage": {"total_usage": 2_000_000_000},
                "system_cpu_usage": 20_000_000_000,
                "online_cpus": 4,
            },
            "precpu_stats": {
                "cpu_usage": {"total_usage": 1_000_000_000},
                "system_cpu_usage": 10_000_000_000,
            },
        }
        assert calculate_cpu_percent(stats) == pytest.approx(40.0)

    def test_cpu_zero_system_delta(self) -> None:
        stats = {
            "cpu_stats": {"cpu_usage": {"total_usage": 5}, "system_cpu_usage": 10},
            "precpu_stats": {"cpu_usage": {"total_usage": 1}, "system_cpu_usage": 10},
        }
        assert calculate_cpu_percent(stats) == 0.0

    def test_cpu_falls_back_to_percpu_count(self) -> None:
        stats = {
            "cpu_stats": {
                "cpu_usage": {"total_usage": 20, "percpu_usage": [10, 10]},
                "system_cpu_usage": 200,
            },
            "precpu_stats": {"cpu_usage": {"total_usage": 10}, "system_cpu_usage": 100},
        }
        assert calculate_cpu_percent(stats) == pytest.approx(20.0)

    def test_memory(self) -> None:
        usage, limit, percent = calculate_memory(
            {"memory_stats": {"usage": 64 * 1024 * 1024, "limit": 256 * 1024 * 1024}}
        )
        assert usage == 64 * 1024 * 1024
        assert limit == 256 * 1024 * 1024
        assert percent == pytest.approx(25.0)

    def test_memory_unknown_limit(self) -> None:
        assert calculate_memory({}) == (0, 0, 0.0)

    async def test_fetch_stats(self, driver, docker) -> None:
        docker.on(
            "GET",
            "/containers/c1/stats",
            httpx.Response(
                200,
                json={
                    "cpu_stats": {
                        "cpu_usage": {"total_usage": 300},
                        "system_cpu_usage": 2000,
                        "online_cpus": 2,
                    },
                    "precpu_stats": {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000},
                    "memory_stats": {"usage": 50, "limit": 200},
                    "networks": {"eth0": {"rx_bytes": 10, "tx_bytes": 20}},
                },
            ),
        )

        stats = await driver.fetch_stats("c1")

        assert stats.cpu_percent == pytest.approx(40.0)
        assert stats.memory_percent == pytest.approx(25.0)
        assert stats.networks["eth0"]["rx_bytes"] == 10
        assert docker.last("GET", "/containers/c1/stats").url.params["stream"] == "false"


class TestSystem:
    async def test_ping(self, driver, docker) -> None:
        docker.on("GET", "/_ping", httpx.Response(200, text="OK"))
        assert await driver.ping() is True

    async def test_ping_unreachable(self, driver, docker) -> None:
        docker.on("GET", "/_ping", httpx.ConnectError("refused"))
        assert await driver.ping() is False

    async def test_info(self, driver, docker) -> None:
        docker.on(
            "GET",
            "/info",
            httpx.Response(
                200,
                json={
                    "Containers": 3,
                    "ContainersRunning": 1,
                    "ContainersStopped": 2,
                    "Images": 5,
                    "ServerVersion": "26.0.0",
                    "NCPU": 8,
                },
            ),
        )

        info = await driver.info()

        assert info["containers"] == 3
        assert info["running"] == 1
        assert info["stopped"] == 2
        assert info["version"] == "26.0.0"
        assert info["cpus"] == 8

    async def test_close(self, driver) -> None:
        await driver.close()
        await driver.close()
