"""
Network Binder Module

Attach/detach primitives shared by the reconcilers and the network migrator,
plus the membership scan used to find the containers on a network.
"""

from typing import Optional, Dict, Any, List

from runtime_client import RuntimeClient
from utils import logger, NotAttachedError


def list_attached_containers(client: RuntimeClient, network_id: str) -> List[str]:
    """Ids of every container the runtime reports as attached to ``network_id``.

    The runtime has no reverse index from network to containers, so this is
    a full scan over all containers. The result is never cached; list order
    is preserved.
    """
    return [
        container["id"]
        for container in client.list_containers()
        if network_id in container["networks"]
    ]


class ContainerNetworkBinder:
    """Connects and disconnects containers to and from networks"""

    def __init__(self, client: RuntimeClient):
        self.client = client

    def disconnect(self, network_id: str, container_id: str, force: bool = True) -> bool:
        """Detach a container from a network.

        Returns False when the container was already detached, which is
        treated as success rather than an error.
        """
        try:
            self.client.disconnect(network_id, container_id, force=force)
        except NotAttachedError:
            logger.info(
                "Container already detached",
                network_id=network_id,
                container_id=container_id,
            )
            return False
        logger.info(
            "Container disconnected", network_id=network_id, container_id=container_id
        )
        return True

    def connect(
        self,
        network_id: str,
        container_id: str,
        endpoint_config: Optional[Dict[str, Any]] = None,
    ):
        """Attach a container to a network with default endpoint settings"""
        self.client.connect(network_id, container_id, endpoint_config)
        logger.info(
            "Container connected", network_id=network_id, container_id=container_id
        )
