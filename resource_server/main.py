"""
Resource Server (protected API). Bearer JWTs verified against the auth server's JWKS.
/public, /me (read), /notes (read/write), /admin (admin). Port 7000.
"""
import logging
import threading

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from resource_server.auth import RequireAdmin, RequireRead, RequireWrite
from resource_server.config import LOG_LEVEL
from token_core.verifier import Principal

app = FastAPI(title="Resource Server", version="1.0.0")

# In-memory notes, keyed by token subject
_notes: dict[str, list[str]] = {}
_notes_lock = threading.Lock()


class NoteIn(BaseModel):
    text: str = Field(min_length=1, max_length=1000)


@app.exception_handler(StarletteHTTPException)
async def oauth_error_handler(request: Request, exc: StarletteHTTPException):
    """Render {"error", "error_description"} details as the flat OAuth error body."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)
    return await http_exception_handler(request, exc)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "resource_server"}


@app.get("/public")
def public():
    """Public endpoint; no authentication required."""
    return {"message": "Public data", "access": "anonymous"}


@app.get("/me")
def me(principal: Principal = RequireRead):
    """Requires scope read. Returns caller identity from token."""
    return {"message": "Authenticated", "sub": principal.subject, "scope": list(principal.scopes)}


@app.get("/notes")
def list_notes(principal: Principal = RequireRead):
    """Requires scope read."""
    with _notes_lock:
        return {"sub": principal.subject, "notes": list(_notes.get(principal.subject, []))}


@app.post("/notes", status_code=201)
def add_note(note: NoteIn, principal: Principal = RequireWrite):
    """Requires scope write."""
    with _notes_lock:
        _notes.setdefault(principal.subject, []).append(note.text)
        count = len(_notes[principal.subject])
    return {"sub": principal.subject, "count": count}


@app.get("/admin")
def admin(principal: Principal = RequireAdmin):
    """Requires scope admin."""
    return {"message": "Admin access", "sub": principal.subject}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(
        "resource_server.main:app",
        host="127.0.0.1",
        port=7000,
        reload=True,
    )
