"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from src.core.admin_gateway import get_admin_gateway
from src.core.config import get_settings
from src.core.currency_cache import get_currency_cache
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status.

    This endpoint should always return 200 if the service is running.
    It does not check external dependencies.

    Returns:
        HealthResponse: Current health status with timestamp.
    """
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check if the Admin API is configured and reachable. Used for readiness probes.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of the commerce platform connection.

    Verifies that:
    - Admin API credentials are configured
    - The shop currency can be read (live or from cache)

    Returns 503 if any check fails.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Status of all dependency checks.
    """
    settings = get_settings()
    checks: list[CheckResult] = [
        CheckResult(
            name="admin_api_config",
            healthy=settings.is_admin_configured,
            error=None if settings.is_admin_configured else "SHOPIFY_STORE_DOMAIN or SHOPIFY_ADMIN_TOKEN missing",
        )
    ]

    if settings.is_admin_configured:
        start_time = time.perf_counter()
        result = await get_admin_gateway().get_shop_currency()
        latency_ms = (time.perf_counter() - start_time) * 1000

        healthy = result.ok
        if healthy:
            get_currency_cache().set("shop_currency", result.data["currencyCode"].upper())
        checks.append(
            CheckResult(
                name="admin_api",
                healthy=healthy,
                latency_ms=round(latency_ms, 2),
                error=result.first_error,
            )
        )

    all_healthy = all(check.healthy for check in checks)
    overall_status = HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY

    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(status=overall_status, checks=checks)
