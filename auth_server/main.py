"""
Authorization Server: client credentials / password token issuance, JWKS publication,
introspection and key rotation. Port 9000.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth_server.audit import router as audit_router
from auth_server.config import ISSUER, LOG_LEVEL
from auth_server.database import init_db, session_scope
from auth_server.introspect import router as introspect_router
from auth_server.key_admin import router as key_admin_router
from auth_server.keys import get_key_manager
from auth_server.seed import seed_from_env
from auth_server.token_endpoint import router as token_router
from auth_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, build the key manager (loads or generates the signing key), seed from env."""
    init_db()
    current = get_key_manager().current_signing_key()
    with session_scope() as db:
        seed_from_env(db)
    logger.info("Auth server ready: issuer=%s signing kid=%s", ISSUER, current.kid)
    yield


app = FastAPI(title="Auth Server", version="1.0.0", lifespan=lifespan)
app.include_router(token_router, tags=["token"])
app.include_router(introspect_router, tags=["introspect"])
app.include_router(well_known_router, tags=["well-known"])
app.include_router(key_admin_router, tags=["keys"])
app.include_router(audit_router)


@app.exception_handler(StarletteHTTPException)
async def oauth_error_handler(request: Request, exc: StarletteHTTPException):
    """Render {"error", "error_description"} details as the flat OAuth error body."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)
    return await http_exception_handler(request, exc)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "auth_server"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(
        "auth_server.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
