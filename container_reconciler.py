"""
Container Reconciler Module

Maps a ContainerSpec onto runtime calls: create (pull, create, start), read,
in-place rename, and idempotent delete. Image and port changes are never
applied in place; they require the container to be replaced.
"""

from typing import Dict, List

from models import ContainerSpec, ContainerState, ContainerDiff, PortMapping
from runtime_client import RuntimeClient
from utils import (
    logger,
    log_resource_operation,
    CreateError,
    NotFoundError,
    ProviderException,
    ReplacementRequiredError,
)

HOST_BIND_ADDRESS = "0.0.0.0"
DEFAULT_STOP_TIMEOUT = 10

# Fields whose change cannot be applied to a live container
REPLACE_FIELDS = ("image", "ports")


def build_port_bindings(ports: List[PortMapping]) -> Dict[str, List[Dict[str, str]]]:
    """Port-binding table: ``internal/tcp`` -> 0.0.0.0:``external``"""
    return {
        f"{mapping.internal}/tcp": [
            {"HostIp": HOST_BIND_ADDRESS, "HostPort": str(mapping.external)}
        ]
        for mapping in ports
    }


def parse_port_bindings(bindings: Dict[str, List[Dict[str, str]]]) -> List[PortMapping]:
    """Inverse of build_port_bindings for tcp bindings reported by the runtime"""
    ports = []
    for container_port, host_bindings in (bindings or {}).items():
        port, _, protocol = container_port.partition("/")
        if protocol not in ("", "tcp") or not host_bindings:
            continue
        for binding in host_bindings:
            if binding.get("HostPort"):
                ports.append(
                    PortMapping(internal=int(port), external=int(binding["HostPort"]))
                )
    return ports


class ContainerReconciler:
    """Container lifecycle against the runtime"""

    kind = "container"

    def __init__(
        self,
        client: RuntimeClient,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        rollback_on_start_failure: bool = True,
    ):
        self.client = client
        self.stop_timeout = stop_timeout
        self.rollback_on_start_failure = rollback_on_start_failure

    def create(self, spec: ContainerSpec) -> str:
        """Pull the image, create and start the container, return its id"""
        logger.info("Creating container", name=spec.name, image=spec.image)

        try:
            self.client.pull_image(spec.image)
        except ProviderException as e:
            log_resource_operation(self.kind, "create", spec.name, "failed", {"step": "pull"})
            raise CreateError(
                f"Failed to pull image {spec.image}: {e.message}", "pull", resource_id=spec.name
            ) from e

        config = {
            "Image": spec.image,
            "ExposedPorts": {f"{mapping.internal}/tcp": {} for mapping in spec.ports},
        }
        host_config = {"PortBindings": build_port_bindings(spec.ports)}

        try:
            container_id = self.client.create_container(config, host_config, spec.name)
        except ProviderException as e:
            log_resource_operation(self.kind, "create", spec.name, "failed", {"step": "create"})
            raise CreateError(
                f"Failed to create container {spec.name}: {e.message}", "create", resource_id=spec.name
            ) from e

        try:
            self.client.start_container(container_id)
        except ProviderException as e:
            rolled_back = self._rollback(container_id)
            log_resource_operation(
                self.kind,
                "create",
                container_id,
                "failed",
                {"step": "start", "rolled_back": rolled_back},
            )
            raise CreateError(
                f"Failed to start container {spec.name}: {e.message}",
                "start",
                resource_id=container_id,
                rolled_back=rolled_back,
            ) from e

        log_resource_operation(self.kind, "create", container_id, "success", {"name": spec.name})
        return container_id

    def _rollback(self, container_id: str) -> bool:
        if not self.rollback_on_start_failure:
            return False
        try:
            self.client.remove_container(container_id, remove_volumes=True, force=True)
        except ProviderException as e:
            logger.error(
                "Rollback of unstarted container failed",
                container_id=container_id,
                error=e.message,
            )
            return False
        logger.info("Rolled back unstarted container", container_id=container_id)
        return True

    def read(self, container_id: str) -> ContainerState:
        """Current state; NotFoundError propagates so callers can plan a recreate"""
        attrs = self.client.inspect_container(container_id)
        return ContainerState(
            id=attrs["id"],
            name=attrs["name"],
            image=attrs["image"],
            ports=parse_port_bindings(attrs["port_bindings"]),
            networks=attrs["networks"],
        )

    def diff(self, container_id: str, spec: ContainerSpec) -> ContainerDiff:
        current = self.read(container_id)
        changed = []
        if current.name != spec.name:
            changed.append("name")
        if current.image != spec.image:
            changed.append("image")
        if sorted(current.ports, key=_port_key) != sorted(spec.ports, key=_port_key):
            changed.append("ports")
        return ContainerDiff(
            changed=changed,
            replace_fields=[field for field in changed if field in REPLACE_FIELDS],
        )

    def update(self, container_id: str, spec: ContainerSpec):
        """Apply a rename; anything else raises ReplacementRequiredError"""
        diff = self.diff(container_id, spec)

        if diff.replace_fields:
            log_resource_operation(
                self.kind, "update", container_id, "replace_required", {"fields": diff.replace_fields}
            )
            raise ReplacementRequiredError(self.kind, container_id, diff.replace_fields)

        if "name" not in diff.changed:
            logger.info("Container already converged", container_id=container_id)
            return

        self.rename(container_id, spec.name)

    def rename(self, container_id: str, new_name: str):
        """The only in-place mutation a container supports"""
        self.client.rename_container(container_id, new_name)
        log_resource_operation(self.kind, "update", container_id, "success", {"name": new_name})

    def delete(self, container_id: str):
        """Stop then force-remove; an absent container counts as deleted"""
        try:
            self.client.stop_container(container_id, timeout=self.stop_timeout)
            self.client.remove_container(container_id, remove_volumes=True, force=True)
        except NotFoundError:
            logger.info("Container already absent", container_id=container_id)
        log_resource_operation(self.kind, "delete", container_id, "success")


def _port_key(mapping: PortMapping):
    return (mapping.internal, mapping.external)
