import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from db import create_db_and_tables
from errors import ReliefError
from routers import auth, chat, donations, live, notifications, requests, users

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("reliefhub")

app = FastAPI(title="ReliefHub", version="2.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.exception_handler(ReliefError)
async def relief_error_handler(request: Request, exc: ReliefError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": type(exc).__name__, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{where}: {first.get('msg', 'invalid input')}" if where else first.get("msg", "invalid input")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "ValidationError", "message": message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.get("/")
def read_root():
    return {
        "success": True,
        "message": "ReliefHub API",
        "version": app.version,
        "status": "running",
        "endpoints": {
            "auth": "/auth",
            "requests": "/requests",
            "chats": "/chats",
            "notifications": "/notifications",
            "users": "/users",
            "donations": "/donations",
            "live": "/ws",
        },
    }


@app.get("/api")
def health():
    return {
        "success": True,
        "message": "API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(auth.router, prefix="/auth")
app.include_router(requests.router, prefix="/requests")
app.include_router(chat.router, prefix="/chats")
app.include_router(notifications.router, prefix="/notifications")
app.include_router(users.router, prefix="/users")
app.include_router(donations.router, prefix="/donations")
app.include_router(live.router)
