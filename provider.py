"""
Provider Module - Process-wide wiring

Builds the single RuntimeClient for the process from configuration and
injects it into the reconcilers. The reconcilers themselves never read the
environment.

Structure:
- runtime_client.py: Docker Engine API calls and error translation
- network_binder.py: connect/disconnect primitives and membership scan
- container_reconciler.py: container create/read/update/delete
- network_reconciler.py: network create/read/update/delete
- network_migrator.py: replacement-network migration workflow
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

from container_reconciler import ContainerReconciler, DEFAULT_STOP_TIMEOUT
from network_reconciler import NetworkReconciler
from runtime_client import RuntimeClient
from utils import logger

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Provider:
    """One runtime client shared by every reconciler"""

    def __init__(
        self,
        client: RuntimeClient,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        rollback_on_start_failure: bool = True,
    ):
        self.client = client
        self.containers = ContainerReconciler(
            client,
            stop_timeout=stop_timeout,
            rollback_on_start_failure=rollback_on_start_failure,
        )
        self.networks = NetworkReconciler(client)


def provider_from_env() -> Provider:
    stop_timeout = int(os.getenv("CONTAINER_STOP_TIMEOUT", DEFAULT_STOP_TIMEOUT))
    rollback = _env_flag("ROLLBACK_ON_START_FAILURE", True)
    logger.info(
        "Configuring provider",
        stop_timeout=stop_timeout,
        rollback_on_start_failure=rollback,
    )
    return Provider(
        RuntimeClient.from_env(),
        stop_timeout=stop_timeout,
        rollback_on_start_failure=rollback,
    )


@lru_cache(maxsize=1)
def get_provider() -> Provider:
    """FastAPI dependency returning the process-wide provider"""
    return provider_from_env()
