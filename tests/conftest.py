import itertools

import pytest

from utils import ConflictError, NotAttachedError, NotFoundError, RuntimeAPIError


class FakeRuntime:
    """In-memory stand-in for RuntimeClient that records every call.

    ``fail(method, exc, when=...)`` makes the next matching calls raise.
    """

    supports_network_rename = False

    def __init__(self):
        self.containers = {}
        self.networks = {}
        self.calls = []
        self.failures = []
        self._ids = itertools.count(1)

    def fail(self, method, exc=None, when=None):
        self.failures.append(
            (method, when or (lambda *args: True), exc or RuntimeAPIError(f"{method} failed", method))
        )

    def _call(self, method, *args):
        self.calls.append((method,) + args)
        for name, when, exc in self.failures:
            if name == method and when(*args):
                raise exc

    def calls_to(self, method):
        return [call[1:] for call in self.calls if call[0] == method]

    def _new_id(self, prefix):
        return f"{prefix}{next(self._ids):04d}"

    # Seeding helpers

    def add_container(self, name, image="busybox:latest", networks=()):
        container_id = self._new_id("c")
        self.containers[container_id] = {
            "name": name,
            "image": image,
            "port_bindings": {},
            "networks": list(networks),
            "running": True,
        }
        return container_id

    def add_network(self, name, driver="bridge"):
        network_id = self._new_id("n")
        self.networks[network_id] = {"name": name, "driver": driver}
        return network_id

    def attached(self, network_id):
        return [cid for cid, c in self.containers.items() if network_id in c["networks"]]

    # RuntimeClient surface

    def ping(self):
        self._call("ping")
        return True

    def pull_image(self, image):
        self._call("pull_image", image)

    def create_container(self, config, host_config, name):
        self._call("create_container", config, host_config, name)
        if any(c["name"] == name for c in self.containers.values()):
            raise ConflictError(f"name {name} in use", "create_container", name)
        container_id = self._new_id("c")
        self.containers[container_id] = {
            "name": name,
            "image": config["Image"],
            "port_bindings": host_config.get("PortBindings", {}),
            "networks": [],
            "running": False,
        }
        return container_id

    def _container(self, container_id, operation):
        if container_id not in self.containers:
            raise NotFoundError(f"{container_id} not found", operation, container_id)
        return self.containers[container_id]

    def start_container(self, container_id):
        self._call("start_container", container_id)
        self._container(container_id, "start_container")["running"] = True

    def inspect_container(self, container_id):
        self._call("inspect_container", container_id)
        container = self._container(container_id, "inspect_container")
        return {
            "id": container_id,
            "name": container["name"],
            "image": container["image"],
            "port_bindings": container["port_bindings"],
            "networks": list(container["networks"]),
        }

    def rename_container(self, container_id, new_name):
        self._call("rename_container", container_id, new_name)
        self._container(container_id, "rename_container")["name"] = new_name

    def stop_container(self, container_id, timeout=10):
        self._call("stop_container", container_id, timeout)
        self._container(container_id, "stop_container")["running"] = False

    def remove_container(self, container_id, remove_volumes=True, force=True):
        self._call("remove_container", container_id, remove_volumes, force)
        self._container(container_id, "remove_container")
        del self.containers[container_id]

    def list_containers(self, filters=None):
        self._call("list_containers", filters)
        return [
            {"id": cid, "name": c["name"], "networks": list(c["networks"])}
            for cid, c in self.containers.items()
        ]

    def find_networks(self, name):
        self._call("find_networks", name)
        return [nid for nid, n in self.networks.items() if n["name"] == name]

    def create_network(self, name, driver):
        self._call("create_network", name, driver)
        if self.find_networks(name):
            raise ConflictError(f"network {name} exists", "create_network", name)
        network_id = self._new_id("n")
        self.networks[network_id] = {"name": name, "driver": driver}
        return network_id

    def _resolve_network(self, ref):
        """Exact id, exact name or unique id prefix, as the daemon accepts"""
        if ref in self.networks:
            return ref
        matches = [nid for nid, n in self.networks.items() if n["name"] == ref]
        matches = matches or [nid for nid in self.networks if nid.startswith(ref)]
        if len(matches) != 1:
            raise NotFoundError(f"{ref} not found", "inspect_network", ref)
        return matches[0]

    def inspect_network(self, network_id):
        self._call("inspect_network", network_id)
        network_id = self._resolve_network(network_id)
        network = self.networks[network_id]
        return {"id": network_id, "name": network["name"], "driver": network["driver"]}

    def rename_network(self, network_id, new_name):
        self._call("rename_network", network_id, new_name)
        self.networks[network_id]["name"] = new_name

    def remove_network(self, network_id):
        self._call("remove_network", network_id)
        self.networks.pop(network_id, None)

    def connect(self, network_id, container_id, endpoint_config=None):
        self._call("connect", network_id, container_id)
        if network_id not in self.networks:
            raise NotFoundError(f"{network_id} not found", "connect", network_id)
        container = self._container(container_id, "connect")
        if network_id in container["networks"]:
            raise RuntimeAPIError("endpoint already exists in network", "connect", container_id)
        container["networks"].append(network_id)

    def disconnect(self, network_id, container_id, force=False):
        self._call("disconnect", network_id, container_id)
        container = self._container(container_id, "disconnect")
        if network_id not in container["networks"]:
            raise NotAttachedError(
                f"container {container_id} is not connected to network {network_id}",
                "disconnect",
                container_id,
            )
        container["networks"].remove(network_id)


@pytest.fixture
def runtime():
    return FakeRuntime()
