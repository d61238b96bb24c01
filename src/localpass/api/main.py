# LocalPass - FastAPI Backend
#
# Local REST API that exposes one VaultSession to a UI on the same machine.
# The session is built from Settings on startup and closed (locked) on
# shutdown.

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import Settings, load_settings
from ..core import (
    AuditLogger,
    EventSeverity,
    EventType,
    log_security_event,
    set_audit_logger,
)
from ..vault import VaultSession, VaultStore
from .security import get_session_token, initialize_session_token
from .vault_routes import get_vault_session, router as vault_router, set_vault_session

app = FastAPI(
    title="LocalPass API",
    description="Local encrypted credential vault API",
    version=__version__,
)

# Localhost UI origins only
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)

# Settings used by the startup hook; replaced by configure_app()
_settings: Optional[Settings] = None


def configure_app(settings: Settings) -> FastAPI:
    """Set the Settings the startup hook builds the vault session from."""
    global _settings
    _settings = settings
    return app


def build_session(settings: Settings) -> VaultSession:
    """Open a VaultSession on the configured database."""
    session = VaultSession(
        VaultStore(settings.db_path),
        kdf_params=settings.kdf_params,
        min_password_length=settings.min_password_length,
    )
    return session.open()


@app.on_event("startup")
async def startup_event():
    """Initialize the audit log, session token and vault session."""
    settings = _settings or load_settings()

    set_audit_logger(AuditLogger(log_dir=settings.audit_log_dir))
    initialize_session_token()

    if get_vault_session() is None:
        set_vault_session(build_session(settings))

    log_security_event(
        EventType.SYSTEM_START,
        EventSeverity.INFO,
        "LocalPass API server started",
        details={"version": __version__, "db_path": str(settings.db_path)},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Lock and close the vault session."""
    session = get_vault_session()
    if session is not None:
        session.close()
        set_vault_session(None)

    log_security_event(
        EventType.SYSTEM_STOP,
        EventSeverity.INFO,
        "LocalPass API server shutting down",
    )


@app.get("/api/session")
async def get_session():
    """
    Session token for the UI.

    Unprotected: the UI calls it once on load. The token is random per
    process and the server binds to localhost.
    """
    return {"session_token": get_session_token()}


@app.get("/api")
async def api_info():
    return {"name": "LocalPass API", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
