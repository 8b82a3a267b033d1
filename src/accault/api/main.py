# accault - FastAPI Backend
#
# Builds the HTTP application around one VaultManager. The app is created
# by create_app() so configuration errors surface at startup and tests can
# pass their own config.

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import VaultConfig
from ..core import EventSeverity, EventType, StoreError, get_audit_logger, store_failure
from ..vault import VaultManager
from .security import configure_session_cookies
from .vault_routes import router as vault_router
from .vault_routes import set_vault_manager

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[VaultConfig] = None, manager: Optional[VaultManager] = None
) -> FastAPI:
    """
    Application factory.

    Args:
        config: Resolved configuration (default: read from the environment)
        manager: Pre-built VaultManager (default: built from ``config``)

    Raises:
        ConfigurationError: if ENCRYPTION_KEY is missing or malformed
    """
    config = config or VaultConfig.from_env()
    manager = manager or VaultManager.from_config(config)

    configure_session_cookies(
        config.session_secret, manager.pin_guard.pin_generation, secure=config.production
    )
    set_vault_manager(manager)

    app = FastAPI(
        title="accault API",
        description="Multi-user encrypted account vault",
        version=__version__,
    )
    app.state.config = config
    app.state.vault_manager = manager
    app.include_router(vault_router)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        # reads fail closed: a store fault is never reported as empty data
        result = store_failure(request.url.path, "Vault storage unavailable", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": result.to_dict()},
        )

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__}

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="accault API created",
        details={"db_path": str(config.db_path), "production": config.production},
    )
    logger.info("accault API ready (db=%s)", config.db_path)
    return app


def start_api_server(config: VaultConfig):
    """
    Start the FastAPI server.

    Args:
        config: Resolved configuration; host/port are taken from it
    """
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")
