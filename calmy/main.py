from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from calmy.core.config import settings
from calmy.core.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

from calmy.database import create_tables
from calmy.routers import chat


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        create_tables()
    logger.info(f"'{settings.PROJECT_NAME}' started")
    yield
    logger.info(f"'{settings.PROJECT_NAME}' shutting down")


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(chat.router)


# Errors are plain text, like the streamed replies
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Request validation failed on {request.url.path}: {exc.errors()}")
    return PlainTextResponse(chat.missing_fields_detail(request.url.path), status_code=status.HTTP_400_BAD_REQUEST)


@app.get("/")
async def root():
    return {"message": "Hello, Calmy chat here!"}
