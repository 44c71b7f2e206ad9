"""
Runtime Client Module

Thin capability surface over the Docker Engine API (docker-py's low-level
APIClient). Every call is synchronous request/response. Docker and transport
exceptions are translated here into the provider exception taxonomy, so the
reconcilers never see docker.errors directly.
"""

import os
from contextlib import contextmanager
from typing import Optional, Dict, Any, List

import docker
import requests
from docker.errors import APIError, DockerException, NotFound
from docker.utils import parse_repository_tag

from utils import (
    logger,
    ConflictError,
    NotAttachedError,
    NotFoundError,
    RuntimeAPIError,
    TransportError,
    UnsupportedOperationError,
)

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DEFAULT_API_TIMEOUT = 60


@contextmanager
def translate_errors(operation: str, resource_id: Optional[str] = None):
    """Convert docker-py and transport exceptions raised inside the block"""
    try:
        yield
    except NotFound as e:
        raise NotFoundError(
            f"{operation}: {resource_id or 'resource'} not found ({e.explanation})",
            operation,
            resource_id,
        ) from e
    except APIError as e:
        explanation = str(e.explanation or e)
        if "is not connected" in explanation.lower():
            raise NotAttachedError(explanation, operation, resource_id) from e
        if e.status_code == 409:
            raise ConflictError(
                f"{operation}: {explanation}", operation, resource_id
            ) from e
        raise RuntimeAPIError(f"{operation}: {explanation}", operation, resource_id) from e
    except (requests.exceptions.RequestException, DockerException) as e:
        raise TransportError(
            f"{operation}: runtime unreachable ({e})", operation, resource_id
        ) from e
    except (KeyError, TypeError, ValueError) as e:
        raise TransportError(
            f"{operation}: malformed runtime response ({e})", operation, resource_id
        ) from e


def _attached_network_ids(network_settings: Optional[Dict[str, Any]]) -> List[str]:
    networks = (network_settings or {}).get("Networks") or {}
    return [
        endpoint.get("NetworkID") or name
        for name, endpoint in networks.items()
    ]


class RuntimeClient:
    """Container and network calls against one Docker daemon"""

    supports_network_rename = False

    def __init__(self, api: docker.APIClient):
        self.api = api

    @classmethod
    def from_env(cls, base_url: str = None, timeout: int = None) -> "RuntimeClient":
        """Build a client for DOCKER_HOST (or the local socket)"""
        base_url = base_url or os.getenv("DOCKER_HOST", DEFAULT_DOCKER_HOST)
        timeout = timeout or int(os.getenv("DOCKER_API_TIMEOUT", DEFAULT_API_TIMEOUT))
        with translate_errors("connect", base_url):
            api = docker.APIClient(base_url=base_url, timeout=timeout)
        logger.info("Runtime client configured", docker_host=base_url, timeout=timeout)
        return cls(api)

    def ping(self) -> bool:
        with translate_errors("ping"):
            return bool(self.api.ping())

    # Images

    def pull_image(self, image: str):
        """Pull an image, draining the progress stream.

        The daemon reports pull failures inside the stream rather than via
        the HTTP status, so every message is checked for an error key.
        """
        repository, tag = parse_repository_tag(image)
        with translate_errors("pull", image):
            for message in self.api.pull(
                repository, tag=tag or "latest", stream=True, decode=True
            ):
                if "error" in message:
                    raise RuntimeAPIError(
                        f"pull: {message['error']}", "pull", image
                    )
                logger.debug("Image pull progress", image=image, status=message.get("status"))

    # Containers

    def create_container(
        self, config: Dict[str, Any], host_config: Dict[str, Any], name: str
    ) -> str:
        body = dict(config)
        body["HostConfig"] = host_config
        with translate_errors("create_container", name):
            response = self.api.create_container_from_config(body, name=name)
            for warning in response.get("Warnings") or []:
                logger.warning("Container create warning", name=name, warning=warning)
            return response["Id"]

    def start_container(self, container_id: str):
        with translate_errors("start_container", container_id):
            self.api.start(container_id)

    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        with translate_errors("inspect_container", container_id):
            attrs = self.api.inspect_container(container_id)
            return {
                "id": attrs["Id"],
                "name": attrs["Name"].lstrip("/"),
                "image": attrs["Config"]["Image"],
                "port_bindings": (attrs.get("HostConfig") or {}).get("PortBindings")
                or {},
                "networks": _attached_network_ids(attrs.get("NetworkSettings")),
            }

    def rename_container(self, container_id: str, new_name: str):
        with translate_errors("rename_container", container_id):
            self.api.rename(container_id, new_name)

    def stop_container(self, container_id: str, timeout: int = 10):
        with translate_errors("stop_container", container_id):
            self.api.stop(container_id, timeout=timeout)

    def remove_container(
        self, container_id: str, remove_volumes: bool = True, force: bool = True
    ):
        with translate_errors("remove_container", container_id):
            self.api.remove_container(container_id, v=remove_volumes, force=force)

    def list_containers(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """List all containers, stopped ones included"""
        with translate_errors("list_containers"):
            return [
                {
                    "id": entry["Id"],
                    "name": (entry.get("Names") or [""])[0].lstrip("/"),
                    "networks": _attached_network_ids(entry.get("NetworkSettings")),
                }
                for entry in self.api.containers(all=True, filters=filters)
            ]

    # Networks

    def find_networks(self, name: str) -> List[str]:
        """Ids of networks whose name is exactly ``name``"""
        with translate_errors("list_networks", name):
            return [
                entry["Id"]
                for entry in self.api.networks(names=[name])
                if entry.get("Name") == name
            ]

    def create_network(self, name: str, driver: str) -> str:
        with translate_errors("create_network", name):
            response = self.api.create_network(name, driver=driver)
            return response["Id"]

    def inspect_network(self, network_id: str) -> Dict[str, Any]:
        with translate_errors("inspect_network", network_id):
            attrs = self.api.inspect_network(network_id)
            return {"id": attrs["Id"], "name": attrs["Name"], "driver": attrs["Driver"]}

    def rename_network(self, network_id: str, new_name: str):
        raise UnsupportedOperationError(
            "docker networks cannot be renamed", "rename_network", network_id
        )

    def remove_network(self, network_id: str):
        """Remove a network; an already absent network counts as removed"""
        try:
            with translate_errors("remove_network", network_id):
                self.api.remove_network(network_id)
        except NotFoundError:
            logger.info("Network already removed", network_id=network_id)

    def connect(
        self,
        network_id: str,
        container_id: str,
        endpoint_config: Optional[Dict[str, Any]] = None,
    ):
        with translate_errors("connect", container_id):
            self.api.connect_container_to_network(
                container_id, network_id, **(endpoint_config or {})
            )

    def disconnect(self, network_id: str, container_id: str, force: bool = False):
        with translate_errors("disconnect", container_id):
            self.api.disconnect_container_from_network(
                container_id, network_id, force=force
            )

