"""
Network Migrator Module

Replaces a network whose driver cannot change in place: creates a replacement
network, then moves every attached container onto it one at a time.

The workflow is not transactional. Progress is tracked in a MigrationPlan
whose ordered step log is the record of what succeeded; a failed run stops at
the first container that could not be moved and reports the partial progress.
The old network is never removed here.

States: planning -> new_network_created -> containers_migrating -> committed,
with failed reachable only from containers_migrating. A run that aborts
before any container is processed keeps the state it reached and reports
it as the MigrationError phase.
"""

import re
import secrets
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel

from models import NetworkSpec
from network_binder import ContainerNetworkBinder, list_attached_containers
from runtime_client import RuntimeClient
from utils import (
    logger,
    MIGRATED_CONTAINERS,
    NETWORK_MIGRATIONS,
    MigrationError,
    ProviderException,
)

NAME_SUFFIX_BYTES = 6


class MigrationState(str, Enum):
    PLANNING = "planning"
    NEW_NETWORK_CREATED = "new_network_created"
    CONTAINERS_MIGRATING = "containers_migrating"
    COMMITTED = "committed"
    FAILED = "failed"


class MigrationStep(BaseModel):
    container_id: str
    action: str  # disconnect, connect or reconnect (back onto the old network)
    succeeded: bool
    error: Optional[str] = None


class MigrationPlan(BaseModel):
    old_network_id: str
    new_network_name: str
    driver: str
    new_network_id: Optional[str] = None
    container_ids: List[str] = []
    cursor: int = 0
    state: MigrationState = MigrationState.PLANNING
    steps: List[MigrationStep] = []

    def transition(self, state: MigrationState):
        logger.info(
            "Migration state change",
            old_network_id=self.old_network_id,
            new_network_id=self.new_network_id,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state

    def record(self, container_id: str, action: str, error: Optional[str] = None):
        self.steps.append(
            MigrationStep(
                container_id=container_id,
                action=action,
                succeeded=error is None,
                error=error,
            )
        )

    @property
    def moved(self) -> List[str]:
        """Containers whose connect to the new network succeeded"""
        return [
            step.container_id
            for step in self.steps
            if step.action == "connect" and step.succeeded
        ]

    @property
    def failed(self) -> Optional[str]:
        for step in self.steps:
            if not step.succeeded and step.action != "reconnect":
                return step.container_id
        return None

    @property
    def detached(self) -> List[str]:
        """Containers left on neither network: connect and reconnect both failed"""
        return [
            step.container_id
            for step in self.steps
            if step.action == "reconnect" and not step.succeeded
        ]

    def outcome(self, container_id: str) -> str:
        if container_id in self.moved:
            return "moved"
        if container_id == self.failed:
            return "failed"
        return "pending"


def generate_network_name(base: str) -> str:
    """Replacement network name with a random suffix"""
    return f"{base}-{secrets.token_hex(NAME_SUFFIX_BYTES)}"


def is_replacement_name(name: str, base: str) -> bool:
    """True for a name generate_network_name(base) could have produced"""
    pattern = rf"{re.escape(base)}-[0-9a-f]{{{NAME_SUFFIX_BYTES * 2}}}"
    return re.fullmatch(pattern, name) is not None


class NetworkMigrator:
    """Moves all containers from one network onto a new one"""

    def __init__(
        self, client: RuntimeClient, binder: Optional[ContainerNetworkBinder] = None
    ):
        self.client = client
        self.binder = binder or ContainerNetworkBinder(client)

    def plan(self, old_network_id: str, spec: NetworkSpec) -> MigrationPlan:
        return MigrationPlan(
            old_network_id=old_network_id,
            new_network_name=generate_network_name(spec.name),
            driver=spec.driver,
        )

    def migrate(self, old_network_id: str, spec: NetworkSpec) -> MigrationPlan:
        """Run a migration to completion.

        Returns the committed plan; its ``new_network_id`` is the id the
        network resource now points at. Raises MigrationError with the
        failed plan attached when any step fails.
        """
        plan = self.plan(old_network_id, spec)
        logger.info(
            "Starting network migration",
            old_network_id=old_network_id,
            new_network_name=plan.new_network_name,
            driver=plan.driver,
        )

        try:
            plan.new_network_id = self.client.create_network(
                plan.new_network_name, plan.driver
            )
        except ProviderException as e:
            self._abort(plan)
            raise MigrationError(
                f"Failed to create replacement network {plan.new_network_name}: {e.message}",
                MigrationState.PLANNING.value,
                old_network_id,
                plan=plan,
            ) from e
        plan.transition(MigrationState.NEW_NETWORK_CREATED)

        try:
            plan.container_ids = list_attached_containers(self.client, old_network_id)
        except ProviderException as e:
            self._abort(plan)
            raise MigrationError(
                f"Failed to list containers on network {old_network_id}: {e.message}",
                MigrationState.NEW_NETWORK_CREATED.value,
                old_network_id,
                new_network_id=plan.new_network_id,
                plan=plan,
            ) from e

        plan.transition(MigrationState.CONTAINERS_MIGRATING)
        for container_id in plan.container_ids:
            if not self._move(plan, container_id):
                self._fail(plan)
                raise MigrationError(
                    f"Migration of network {old_network_id} stopped at container "
                    f"{container_id}; moved: {plan.moved or 'none'}"
                    + (f"; detached: {plan.detached}" if plan.detached else ""),
                    MigrationState.CONTAINERS_MIGRATING.value,
                    old_network_id,
                    new_network_id=plan.new_network_id,
                    moved=plan.moved,
                    failed=container_id,
                    detached=plan.detached,
                    steps=[step.model_dump() for step in plan.steps],
                    plan=plan,
                )
            plan.cursor += 1

        plan.transition(MigrationState.COMMITTED)
        NETWORK_MIGRATIONS.labels(outcome="committed").inc()
        logger.info(
            "Network migration committed",
            old_network_id=old_network_id,
            new_network_id=plan.new_network_id,
            moved=len(plan.moved),
        )
        return plan

    def _move(self, plan: MigrationPlan, container_id: str) -> bool:
        """Disconnect from the old network, connect to the new one.

        If the connect fails the container is reattached to the old network,
        so a failed move leaves it where it started.
        """
        try:
            self.binder.disconnect(plan.old_network_id, container_id, force=True)
        except ProviderException as e:
            plan.record(container_id, "disconnect", e.message)
            logger.error("Disconnect failed", container_id=container_id, error=e.message)
            return False
        plan.record(container_id, "disconnect")

        try:
            self.binder.connect(plan.new_network_id, container_id)
        except ProviderException as e:
            plan.record(container_id, "connect", e.message)
            logger.error("Connect failed", container_id=container_id, error=e.message)
            self._reattach(plan, container_id)
            return False
        plan.record(container_id, "connect")
        MIGRATED_CONTAINERS.inc()
        return True

    def _reattach(self, plan: MigrationPlan, container_id: str):
        try:
            self.binder.connect(plan.old_network_id, container_id)
        except ProviderException as e:
            plan.record(container_id, "reconnect", e.message)
            logger.error(
                "Container left detached from both networks",
                container_id=container_id,
                old_network_id=plan.old_network_id,
                error=e.message,
            )
            return
        plan.record(container_id, "reconnect")

    def _fail(self, plan: MigrationPlan):
        plan.transition(MigrationState.FAILED)
        NETWORK_MIGRATIONS.labels(outcome="failed").inc()

    def _abort(self, plan: MigrationPlan):
        logger.error(
            "Network migration aborted before moving containers",
            old_network_id=plan.old_network_id,
            state=plan.state.value,
        )
        NETWORK_MIGRATIONS.labels(outcome="aborted").inc()
