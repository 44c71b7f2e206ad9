"""
Network Reconciler Module

Maps a NetworkSpec onto runtime calls. A driver change cannot be applied to a
live network and is delegated to the NetworkMigrator, which re-points the
resource at a replacement network.
"""

from typing import Optional

from models import NetworkSpec, NetworkState
from network_migrator import NetworkMigrator, is_replacement_name
from runtime_client import RuntimeClient
from utils import (
    logger,
    log_resource_operation,
    ConflictError,
    MigrationError,
    ReplacementRequiredError,
)


class NetworkReconciler:
    """Network lifecycle against the runtime"""

    kind = "network"

    def __init__(self, client: RuntimeClient, migrator: Optional[NetworkMigrator] = None):
        self.client = client
        self.migrator = migrator or NetworkMigrator(client)

    def create(self, spec: NetworkSpec) -> str:
        if self.client.find_networks(spec.name):
            log_resource_operation(self.kind, "create", spec.name, "conflict")
            raise ConflictError(
                f"Network named {spec.name} already exists", "create", spec.name
            )

        network_id = self.client.create_network(spec.name, spec.driver)
        log_resource_operation(
            self.kind, "create", network_id, "success", {"name": spec.name, "driver": spec.driver}
        )
        return network_id

    def read(self, network_id: str) -> NetworkState:
        return NetworkState(**self.client.inspect_network(network_id))

    def update(self, network_id: str, spec: NetworkSpec) -> str:
        """Converge the network on ``spec`` and return the id it now has.

        The id only changes when a driver change forced a migration. A
        network a migration created carries a generated name derived from
        the desired one; that name counts as converged.
        """
        current = self.read(network_id)

        if current.driver != spec.driver:
            logger.info(
                "Network driver changed, migrating",
                network_id=network_id,
                from_driver=current.driver,
                to_driver=spec.driver,
            )
            try:
                plan = self.migrator.migrate(current.id, spec)
            except MigrationError as e:
                log_resource_operation(
                    self.kind,
                    "update",
                    network_id,
                    "migration_failed",
                    {
                        "phase": e.phase,
                        "moved": e.moved,
                        "failed": e.failed,
                        "detached": e.detached,
                    },
                )
                raise
            log_resource_operation(
                self.kind,
                "update",
                network_id,
                "migrated",
                {"new_network_id": plan.new_network_id, "moved": plan.moved},
            )
            return plan.new_network_id

        if current.name != spec.name and not is_replacement_name(current.name, spec.name):
            if not self.client.supports_network_rename:
                log_resource_operation(self.kind, "update", network_id, "replace_required")
                raise ReplacementRequiredError(self.kind, network_id, ["name"])
            self.client.rename_network(network_id, spec.name)
            log_resource_operation(self.kind, "update", network_id, "success", {"name": spec.name})
            return network_id

        logger.info("Network already converged", network_id=network_id)
        return network_id

    def delete(self, network_id: str):
        """Remove the network; an absent network counts as deleted"""
        self.client.remove_network(network_id)
        log_resource_operation(self.kind, "delete", network_id, "success")
