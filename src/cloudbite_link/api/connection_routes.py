"""
Connection status API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime, timezone
import logging

from ..diagnostics import format_diagnostic_result
from ..reconnect import STATUS_DESCRIPTIONS

logger = logging.getLogger(__name__)


# Response models
class ConnectionStateResponse(BaseModel):
    is_searching: bool
    is_connected: bool
    is_healthy: bool
    has_wifi: bool
    server_url: Optional[str]
    error: Optional[str] = None
    attempts: int
    mode: str
    needs_server_config: bool


class ReconnectStateResponse(BaseModel):
    status: str
    description: str
    is_reconnecting: bool
    attempts: int
    last_error: Optional[str] = None
    logs: List[str]


class HealthStateResponse(BaseModel):
    is_available: bool
    message: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    consecutive_failures: int
    monitoring: bool


class TestConnectionRequest(BaseModel):
    url: str


class TestConnectionResponse(BaseModel):
    url: str
    compatible: bool


class NetworkStatusResponse(BaseModel):
    is_connected: bool
    type: str
    has_wifi: bool


class ApiProbeResponse(BaseModel):
    success: bool
    response_time_ms: Optional[int] = None
    status: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class DiagnosticsResponse(BaseModel):
    timestamp: datetime
    api_url: Optional[str] = None
    network: Optional[NetworkStatusResponse] = None
    api_test: ApiProbeResponse
    recommendations: List[str]
    report: str


def _connection_response(state) -> ConnectionStateResponse:
    return ConnectionStateResponse(
        is_searching=state.is_searching,
        is_connected=state.is_connected,
        is_healthy=state.is_healthy,
        has_wifi=state.has_wifi,
        server_url=state.server_url,
        error=state.error,
        attempts=state.attempts,
        mode=state.mode,
        needs_server_config=state.needs_server_config
    )


def create_connection_routes(facade, reconnect, health):
    """Create connection monitoring and control routes"""
    router = APIRouter(prefix="/api/connection", tags=["connection"])

    @router.get("", response_model=ConnectionStateResponse)
    async def get_connection_state():
        """Current aggregate connection state"""
        try:
            return _connection_response(facade.get_state())
        except Exception as e:
            logger.error(f"Error getting connection state: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/retry", response_model=ConnectionStateResponse)
    async def retry_connection():
        """Force a fresh connection attempt that bypasses the cached server"""
        try:
            state = await facade.retry()
            return _connection_response(state)
        except Exception as e:
            logger.error(f"Error retrying connection: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/reconnect", response_model=ReconnectStateResponse)
    async def get_reconnect_state():
        """Auto-reconnect status with its log"""
        try:
            state = reconnect.get_state()
            return ReconnectStateResponse(
                status=state.status.value,
                description=STATUS_DESCRIPTIONS[state.status],
                is_reconnecting=state.is_reconnecting,
                attempts=state.attempts,
                last_error=state.last_error,
                logs=list(state.logs)
            )
        except Exception as e:
            logger.error(f"Error getting reconnect state: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/health", response_model=HealthStateResponse)
    async def get_health_state():
        """Latest health monitor result"""
        try:
            state = health.get_state()
            checked_at = None
            if state.last_checked_at is not None:
                checked_at = datetime.fromtimestamp(state.last_checked_at, tz=timezone.utc)
            return HealthStateResponse(
                is_available=state.is_available,
                message=state.message,
                last_checked_at=checked_at,
                consecutive_failures=health.consecutive_failures,
                monitoring=health.is_monitoring()
            )
        except Exception as e:
            logger.error(f"Error getting health state: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/test", response_model=TestConnectionResponse)
    async def test_connection(request: TestConnectionRequest):
        """Check whether a URL serves a compatible CloudBite server"""
        try:
            compatible = await facade.test_connection(request.url)
            return TestConnectionResponse(url=request.url, compatible=compatible)
        except Exception as e:
            logger.error(f"Error testing connection to {request.url}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/diagnostics", response_model=DiagnosticsResponse)
    async def run_diagnostics(url: Optional[str] = None):
        """Device network state, a timed probe of the server and recommendations"""
        try:
            result = await facade.run_diagnostics(url)
            network = None
            if result.network is not None:
                network = NetworkStatusResponse(
                    is_connected=result.network.is_connected,
                    type=result.network.type,
                    has_wifi=result.network.has_wifi
                )
            api = result.api_test
            return DiagnosticsResponse(
                timestamp=datetime.fromtimestamp(result.timestamp, tz=timezone.utc),
                api_url=result.api_url,
                network=network,
                api_test=ApiProbeResponse(
                    success=api.success,
                    response_time_ms=api.response_time_ms,
                    status=api.status,
                    error=api.error,
                    error_code=api.error_code
                ),
                recommendations=list(result.recommendations),
                report=format_diagnostic_result(result)
            )
        except Exception as e:
            logger.error(f"Error running diagnostics: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return router
