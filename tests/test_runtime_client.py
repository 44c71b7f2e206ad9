import pytest
import requests
from unittest.mock import Mock, MagicMock

from docker.errors import APIError, NotFound

from runtime_client import RuntimeClient
from utils import (
    ConflictError,
    NotAttachedError,
    NotFoundError,
    RuntimeAPIError,
    TransportError,
    UnsupportedOperationError,
)


def api_error(status_code, explanation):
    return APIError(
        "API error", response=Mock(status_code=status_code), explanation=explanation
    )


@pytest.fixture
def api():
    return MagicMock()


@pytest.fixture
def client(api):
    return RuntimeClient(api)


class TestErrorTranslation:
    """Docker exceptions become provider exceptions"""

    def test_not_found(self, client, api):
        api.inspect_container.side_effect = NotFound("No such container")

        with pytest.raises(NotFoundError) as excinfo:
            client.inspect_container("abc")

        assert excinfo.value.resource_id == "abc"
        assert excinfo.value.operation == "inspect_container"

    def test_conflict(self, client, api):
        api.create_network.side_effect = api_error(409, "network with name app already exists")

        with pytest.raises(ConflictError):
            client.create_network("app", "bridge")

    def test_not_connected(self, client, api):
        api.disconnect_container_from_network.side_effect = api_error(
            403, "container abc is not connected to network app"
        )

        with pytest.raises(NotAttachedError):
            client.disconnect("net", "abc")

    def test_other_api_errors(self, client, api):
        api.start.side_effect = api_error(500, "driver failed programming external connectivity")

        with pytest.raises(RuntimeAPIError):
            client.start_container("abc")

    def test_unreachable_daemon(self, client, api):
        api.containers.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError):
            client.list_containers()

    def test_malformed_response(self, client, api):
        api.inspect_network.return_value = {"Id": "n1"}

        with pytest.raises(TransportError):
            client.inspect_network("n1")


class TestContainerCalls:
    """Test cases for container call shapes"""

    def test_create_sends_host_config(self, client, api):
        api.create_container_from_config.return_value = {"Id": "c1", "Warnings": []}

        container_id = client.create_container(
            {"Image": "nginx:1.25"}, {"PortBindings": {}}, "web1"
        )

        assert container_id == "c1"
        api.create_container_from_config.assert_called_once_with(
            {"Image": "nginx:1.25", "HostConfig": {"PortBindings": {}}}, name="web1"
        )

    def test_inspect_normalizes(self, client, api):
        api.inspect_container.return_value = {
            "Id": "c1",
            "Name": "/web1",
            "Config": {"Image": "nginx:1.25"},
            "HostConfig": {"PortBindings": {"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]}},
            "NetworkSettings": {"Networks": {"bridge": {"NetworkID": "n1"}}},
        }

        assert client.inspect_container("c1") == {
            "id": "c1",
            "name": "web1",
            "image": "nginx:1.25",
            "port_bindings": {"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]},
            "networks": ["n1"],
        }

    def test_list_includes_stopped_containers(self, client, api):
        api.containers.return_value = [
            {
                "Id": "c1",
                "Names": ["/web1"],
                "NetworkSettings": {"Networks": {"app": {"NetworkID": "n1"}}},
            }
        ]

        assert client.list_containers() == [{"id": "c1", "name": "web1", "networks": ["n1"]}]
        api.containers.assert_called_once_with(all=True, filters=None)

    def test_remove_passes_volume_and_force_flags(self, client, api):
        client.remove_container("c1", remove_volumes=True, force=True)

        api.remove_container.assert_called_once_with("c1", v=True, force=True)

    def test_pull_error_in_stream(self, client, api):
        api.pull.return_value = iter(
            [{"status": "Pulling from library/nginx"}, {"error": "manifest unknown"}]
        )

        with pytest.raises(RuntimeAPIError):
            client.pull_image("nginx:9.99")

        api.pull.assert_called_once_with("nginx", tag="9.99", stream=True, decode=True)

    def test_pull_defaults_to_latest(self, client, api):
        api.pull.return_value = iter([{"status": "Downloaded newer image"}])

        client.pull_image("redis")

        api.pull.assert_called_once_with("redis", tag="latest", stream=True, decode=True)


class TestNetworkCalls:
    """Test cases for network call shapes"""

    def test_find_networks_matches_exact_name(self, client, api):
        api.networks.return_value = [
            {"Id": "n1", "Name": "app"},
            {"Id": "n2", "Name": "app-staging"},
        ]

        assert client.find_networks("app") == ["n1"]

    def test_remove_missing_network_succeeds(self, client, api):
        api.remove_network.side_effect = NotFound("network n1 not found")

        client.remove_network("n1")

    def test_rename_is_unsupported(self, client):
        assert client.supports_network_rename is False
        with pytest.raises(UnsupportedOperationError):
            client.rename_network("n1", "other")

    def test_connect_forwards_endpoint_config(self, client, api):
        client.connect("n1", "c1", {"aliases": ["web"]})

        api.connect_container_to_network.assert_called_once_with("c1", "n1", aliases=["web"])
