import logging
import sqlite3

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import init_db
from .routes.auth import router as auth_router
from .routes.profile import router as profile_router
from .routes.todos import router as todos_router

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger("tasknest")

app = FastAPI(title="Tasknest API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(todos_router)


@app.on_event("startup")
def startup() -> None:
    init_db()
    logger.info("Database ready at %s", get_settings().database_path)


@app.exception_handler(sqlite3.Error)
async def database_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/")
def root():
    return {"message": "API is working"}
