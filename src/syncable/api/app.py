"""
FastAPI application receiving syncs from other systems.
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..engine.sync import SyncOrchestrator
from ..exceptions import (
    IdentityMappingError, NoMappingError, SyncAuthenticationError, SyncDecryptionError, SyncException, SyncValidationError
)
from ..integrations.client import API_KEY_ENCRYPTED_HEADER, API_KEY_HEADER
from ..models.records import SyncAction
from ..version import __version__

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-TENANT-ID"

STATUS_CODES = (
    (SyncDecryptionError, 400),
    (SyncAuthenticationError, 401),
    (NoMappingError, 404),
    (IdentityMappingError, 409),
    (SyncValidationError, 422),
)


def status_for(error: Exception) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def verify_api_key(request: Request, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> None:
    """
    Check the pre-shared API key sent by the other system.

    The key arrives encrypted unless the sender says otherwise.

    Raises:
        SyncAuthenticationError: If the key is missing, undecryptable or wrong
    """
    expected = orchestrator.settings.api.key
    if not expected:
        raise SyncAuthenticationError("API key not configured.")

    received = request.headers.get(API_KEY_HEADER)
    if not received:
        raise SyncAuthenticationError("API key is required.")

    if request.headers.get(API_KEY_ENCRYPTED_HEADER, "true").lower() == "true":
        if orchestrator.encryption is None:
            raise SyncAuthenticationError("Received an encrypted API key but no encryption key is configured")
        try:
            received = orchestrator.encryption.decrypt(received)
        except SyncDecryptionError as e:
            raise SyncAuthenticationError(f"Invalid encrypted API key format: {e}")

    if not isinstance(received, str) or not hmac.compare_digest(received.encode(), expected.encode()):
        raise SyncAuthenticationError("Invalid API key.")


def _tenant_for(request: Request, data: Dict[str, Any]) -> Optional[Any]:
    return data.get("target_tenant_id") or request.headers.get(TENANT_HEADER) or data.get("tenant_id")


def _origin_for(body: Dict[str, Any], data: Dict[str, Any]) -> str:
    return body.get("origin_system_id") or data.get("origin_system_id") or "unknown"


def create_app(orchestrator: SyncOrchestrator) -> FastAPI:
    """
    Build the receiving application around an orchestrator.

    Args:
        orchestrator: Fully wired orchestrator of this system

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Syncable API",
        description="Receives record changes replicated from other systems",
        version=__version__,
    )
    app.state.orchestrator = orchestrator

    @app.exception_handler(SyncException)
    async def handle_sync_exception(request: Request, exc: SyncException):
        status_code = status_for(exc)
        if orchestrator.settings.logging.enabled:
            logger.error(f"Sync request error ({status_code}): {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "message": str(exc), "error_type": type(exc).__name__},
        )

    @app.exception_handler(Exception)
    async def handle_exception(request: Request, exc: Exception):
        if orchestrator.settings.logging.enabled:
            logger.error(f"Sync request error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": f"Failed to process request: {exc}",
                "error_type": type(exc).__name__,
            },
        )

    def apply(request: Request, body: Dict[str, Any], action: SyncAction) -> Dict[str, Any]:
        data = orchestrator.decode(body)
        origin_system_id = _origin_for(body, data)
        with orchestrator.tenant.use(_tenant_for(request, data)):
            return orchestrator.apply_incoming(data, action, origin_system_id)

    @app.get("/health")
    def health_check():
        """Check the health of the application."""
        return {
            "status": "healthy",
            "version": __version__,
            "system_id": orchestrator.system_id,
        }

    @app.post("/api/syncable", dependencies=[Depends(verify_api_key)])
    def receive(body: Dict[str, Any]):
        return orchestrator.receive(body)

    @app.post("/api/syncable/create", dependencies=[Depends(verify_api_key)])
    def create(request: Request, body: Dict[str, Any]):
        return apply(request, body, SyncAction.CREATE)

    @app.post("/api/syncable/update", dependencies=[Depends(verify_api_key)])
    def update(request: Request, body: Dict[str, Any]):
        return apply(request, body, SyncAction.UPDATE)

    @app.post("/api/syncable/delete", dependencies=[Depends(verify_api_key)])
    def delete(request: Request, body: Dict[str, Any]):
        return apply(request, body, SyncAction.DELETE)

    @app.post("/api/syncable/batch", dependencies=[Depends(verify_api_key)])
    def batch(request: Request, body: Dict[str, Any]):
        data = orchestrator.decode(body)
        origin_system_id = _origin_for(body, data)
        with orchestrator.tenant.use(_tenant_for(request, data)):
            return orchestrator.batch(data, origin_system_id)

    return app
