from fastapi import (
    FastAPI,
    HTTPException,
    Depends,
    Header,
    Request,
    Response,
)
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from models import ContainerSpec, NetworkSpec
from provider import Provider, get_provider
from utils import (
    logger,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    log_request,
    get_metrics,
    health_check,
    ProviderException,
)
from dotenv import load_dotenv
import os
import time

from typing import Optional
from prometheus_client import CONTENT_TYPE_LATEST

load_dotenv()

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Container Provider",
    description="Declarative container and network reconciliation API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Authentication dependency
async def verify_provider_token(authorization: Optional[str] = Header(None)):
    """Verify that the request carries the provider bearer token"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    expected_token = os.getenv("PROVIDER_TOKEN", "default-secret-token")
    if authorization != f"Bearer {expected_token}":
        raise HTTPException(status_code=403, detail="Invalid provider token")

    return True


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    response_time = time.time() - start_time
    log_request(request, response_time, response.status_code)

    REQUEST_COUNT.labels(
        method=request.method, endpoint=request.url.path, status=response.status_code
    ).inc()
    REQUEST_LATENCY.observe(response_time)

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=exc.errors())
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({"detail": "Validation error", "errors": exc.errors()}),
    )


@app.exception_handler(ProviderException)
async def provider_exception_handler(request: Request, exc: ProviderException):
    logger.error(
        "Provider exception",
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        operation=exc.operation,
        resource_id=exc.resource_id,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_code": "INTERNAL_ERROR"},
    )


# Containers


@app.post("/containers")
@limiter.limit("30/minute")
def create_container(
    spec: ContainerSpec,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    """Create and start a container"""
    logger.info("Create container requested", spec=spec.model_dump())
    return {"id": provider.containers.create(spec)}


@app.get("/containers/{container_id}")
def read_container(
    container_id: str,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    return provider.containers.read(container_id).model_dump()


@app.post("/containers/{container_id}/diff")
def diff_container(
    container_id: str,
    spec: ContainerSpec,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    """Report drift between the live container and ``spec``"""
    diff = provider.containers.diff(container_id, spec)
    return {
        "changed": diff.changed,
        "replace_fields": diff.replace_fields,
        "kind": diff.kind.value,
    }


@app.put("/containers/{container_id}")
@limiter.limit("30/minute")
def update_container(
    container_id: str,
    spec: ContainerSpec,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    provider.containers.update(container_id, spec)
    return {"id": container_id}


@app.delete("/containers/{container_id}")
@limiter.limit("30/minute")
def delete_container(
    container_id: str,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    provider.containers.delete(container_id)
    return {"id": container_id, "deleted": True}


# Networks


@app.post("/networks")
@limiter.limit("30/minute")
def create_network(
    spec: NetworkSpec,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    logger.info("Create network requested", spec=spec.model_dump())
    return {"id": provider.networks.create(spec)}


@app.get("/networks/{network_id}")
def read_network(
    network_id: str,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    return provider.networks.read(network_id).model_dump()


@app.put("/networks/{network_id}")
@limiter.limit("10/minute")
def update_network(
    network_id: str,
    spec: NetworkSpec,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    """Converge a network; the returned id changes when a migration ran"""
    return {"id": provider.networks.update(network_id, spec)}


@app.delete("/networks/{network_id}")
@limiter.limit("30/minute")
def delete_network(
    network_id: str,
    request: Request,
    _: bool = Depends(verify_provider_token),
    provider: Provider = Depends(get_provider),
):
    provider.networks.delete(network_id)
    return {"id": network_id, "deleted": True}


@app.get("/health", status_code=200)
def health_endpoint():
    """Health check including runtime reachability"""
    try:
        runtime = get_provider().client
    except ProviderException as e:
        logger.warning("Runtime client unavailable", error=e.message)
        return {"status": "degraded", "services": {"runtime": "unreachable"}}
    return health_check(runtime)


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Container Provider",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
