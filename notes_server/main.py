"""
Notes server — REST backend for the notes browser client.
Bearer tokens from the Keycloak realm; notes stored per token subject.
Port 3001 by default (PORT).
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from notes_server.auth import AuthError, CurrentIdentity, require_role
from notes_server.config import CORS_ORIGINS, ROLE_ADMIN
from notes_server.database import close_db, init_db
from notes_server.keys import KeyResolutionError
from notes_server.notes import router as notes_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the notes table on startup; close the connection pool on shutdown."""
    try:
        init_db()
    except Exception:
        logger.exception("Failed to initialize database")
        raise
    logger.info("Database initialized successfully")
    yield
    logger.info("Shutting down gracefully...")
    close_db()


app = FastAPI(title="Notes Server", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(notes_router, tags=["notes"])


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(
        status_code=401,
        content={"error": exc.message, "kind": exc.kind.value},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(KeyResolutionError)
async def key_resolution_error_handler(request: Request, exc: KeyResolutionError):
    # Detail already logged by the resolver
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        content = {"error": "Route not found"}
    elif isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/api/health")
def health():
    """Health check endpoint; no authentication."""
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/user")
def user(identity: CurrentIdentity):
    """Echo the caller's identity from the verified token."""
    return identity.to_dict()


@app.get("/api/admin/ping")
def admin_ping(identity=require_role(ROLE_ADMIN)):
    """Requires realm role admin."""
    return {"message": "Admin access", "sub": identity.subject}


if __name__ == "__main__":
    import uvicorn

    from notes_server.config import HOST, LOG_LEVEL, PORT

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "notes_server.main:app",
        host=HOST,
        port=PORT,
        log_level=LOG_LEVEL.lower(),
    )
