import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ALLOWED_ORIGINS, DATABASE_URL
from .database import Database
from .domain.plans.router import router as plans_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Build the API app.

    Pass a Database to share one the caller owns (tests, embedding); otherwise
    one is opened from DATABASE_URL at startup and disposed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        owns_database = getattr(app.state, "database", None) is None
        if owns_database:
            app.state.database = Database(DATABASE_URL)

        try:
            app.state.database.create_all()
            logger.info("Database tables created successfully")
        except Exception as e:
            # Ignore "already exists" errors from race conditions between workers
            error_msg = str(e)
            if "already exists" in error_msg or "duplicate key" in error_msg:
                logger.info("Database tables already exist (created by another worker)")
            else:
                logger.error(f"Failed to create database tables: {e}")

        yield
        logger.info("Application shutting down...")
        if owns_database:
            app.state.database.dispose()
            app.state.database = None

    app = FastAPI(title="PoolCare Service Plans API", version="1.0.0", lifespan=lifespan)
    if database is not None:
        app.state.database = database

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=422, content={"detail": jsonable_errors(exc.errors())}
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
            raise

    logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )

    app.include_router(plans_router)

    @app.get("/")
    def root():
        return {"message": "PoolCare Service Plans API is running"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


def jsonable_errors(errors: list) -> list:
    """Pydantic error payloads can carry the raised exception in ctx; stringify it"""
    cleaned = []
    for error in errors:
        error = dict(error)
        ctx = error.get("ctx")
        if ctx:
            error["ctx"] = {key: str(value) for key, value in ctx.items()}
        cleaned.append(error)
    return cleaned


app = create_app()
