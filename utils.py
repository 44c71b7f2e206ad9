import os
import structlog
from datetime import datetime
from typing import Optional, Dict, Any, List
from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
)
from fastapi import Request

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")
RESOURCE_OPERATIONS = Counter(
    "resource_operations_total",
    "Reconciler operations",
    ["kind", "operation", "status"],
)
NETWORK_MIGRATIONS = Counter(
    "network_migrations_total", "Network replacement migrations", ["outcome"]
)
MIGRATED_CONTAINERS = Counter(
    "migrated_containers_total", "Containers moved onto a replacement network"
)


def log_request(request: Request, response_time: float, status_code: int):
    """Log request details with structured logging"""
    logger.info(
        "HTTP request",
        method=request.method,
        url=str(request.url),
        status_code=status_code,
        response_time=response_time,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def log_resource_operation(
    kind: str,
    operation: str,
    resource_id: str,
    status: str,
    details: Dict[str, Any] = None,
):
    """Log reconciler operations with structured logging"""
    logger.info(
        "Resource operation",
        kind=kind,
        operation=operation,
        resource_id=resource_id,
        status=status,
        details=details or {},
    )
    RESOURCE_OPERATIONS.labels(kind=kind, operation=operation, status=status).inc()


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


def health_check(runtime=None) -> Dict[str, Any]:
    """Health check including reachability of the container runtime"""
    services = {}
    status = "healthy"

    if runtime is not None:
        try:
            runtime.ping()
            services["runtime"] = "healthy"
        except ProviderException as e:
            logger.warning("Runtime health check failed", error=e.message)
            services["runtime"] = "unreachable"
            status = "degraded"

    return {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "services": services,
        "pid": os.getpid(),
    }


# Error handling utilities
class ProviderException(Exception):
    """Base exception for reconciler failures"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        status_code: int = 500,
        operation: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.operation = operation
        self.resource_id = resource_id
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "error_code": self.error_code,
            "operation": self.operation,
            "resource_id": self.resource_id,
        }


class TransportError(ProviderException):
    """The runtime control plane is unreachable or answered with garbage"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "TRANSPORT_ERROR", 502, operation, resource_id)


class NotFoundError(ProviderException):
    """The referenced id does not exist at the runtime"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "NOT_FOUND", 404, operation, resource_id)


class ConflictError(ProviderException):
    """Name collision on create"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "CONFLICT", 409, operation, resource_id)


class CreateError(ProviderException):
    """Failure during the multi-step container bring-up"""

    def __init__(
        self,
        message: str,
        step: str,
        resource_id: str = None,
        rolled_back: bool = False,
    ):
        super().__init__(message, "CREATE_ERROR", 500, "create", resource_id)
        self.step = step
        self.rolled_back = rolled_back

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"step": self.step, "rolled_back": self.rolled_back})
        return data


class ReplacementRequiredError(ProviderException):
    """A force-replace field changed; the resource must be destroyed and recreated"""

    def __init__(self, kind: str, resource_id: str, fields: List[str]):
        super().__init__(
            f"{kind} {resource_id} cannot be updated in place, "
            f"changed fields require replacement: {', '.join(fields)}",
            "REPLACEMENT_REQUIRED",
            409,
            "update",
            resource_id,
        )
        self.fields = list(fields)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class RuntimeAPIError(ProviderException):
    """The runtime answered but rejected the call"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "RUNTIME_ERROR", 500, operation, resource_id)


class NotAttachedError(ProviderException):
    """The container is not connected to the network it is being detached from"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "NOT_ATTACHED", 409, operation, resource_id)


class UnsupportedOperationError(ProviderException):
    """The runtime does not implement the requested call"""

    def __init__(self, message: str, operation: str = None, resource_id: str = None):
        super().__init__(message, "UNSUPPORTED", 501, operation, resource_id)


class MigrationError(ProviderException):
    """A network migration stopped before committing.

    ``moved`` lists the containers already attached to the new network,
    ``failed`` is the single container whose move failed (None when the
    migration failed before any container was processed), ``detached``
    lists containers left on neither network and ``steps`` is the ordered
    step log of the run.
    """

    def __init__(
        self,
        message: str,
        phase: str,
        old_network_id: str,
        new_network_id: Optional[str] = None,
        moved: Optional[List[str]] = None,
        failed: Optional[str] = None,
        detached: Optional[List[str]] = None,
        steps: Optional[List[Dict[str, Any]]] = None,
        plan=None,
    ):
        super().__init__(message, "MIGRATION_ERROR", 500, "migrate", old_network_id)
        self.phase = phase
        self.old_network_id = old_network_id
        self.new_network_id = new_network_id
        self.moved = list(moved or [])
        self.failed = failed
        self.detached = list(detached or [])
        self.steps = list(steps or [])
        self.plan = plan

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "phase": self.phase,
                "old_network_id": self.old_network_id,
                "new_network_id": self.new_network_id,
                "moved": self.moved,
                "failed": self.failed,
                "detached": self.detached,
                "steps": self.steps,
            }
        )
        return data
