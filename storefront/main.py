import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import CORS_ORIGINS, DATABASE_URL, STORE_NAME
from storefront.core.database import Base, SessionLocal, engine
from storefront.core.errors import StorefrontError
from storefront.core.http_errors import error_response
from storefront.core.logging_setup import configure_logging
from storefront.core.rate_limiter import build_rate_limiter
from storefront.core.startup_checks import ensure_migrations_applied, validate_database_environment
from storefront.middleware.observability import ObservabilityMiddleware
from storefront.middleware.rate_limit import RouteRateLimitMiddleware
import storefront.models  # registers every table on Base.metadata
import storefront.services.event_handlers  # subscribes notification handlers

from storefront.models.user import ROLE_ADMIN, User
from storefront.routers.admin_coupons import router as admin_coupons_router
from storefront.routers.admin_orders import router as admin_orders_router
from storefront.routers.checkout import router as checkout_router
from storefront.routers.coupons import router as coupons_router
from storefront.routers.email import router as email_router
from storefront.routers.internal_metrics import router as internal_metrics_router
from storefront.routers.orders import router as orders_router
from storefront.routers.webhooks import router as webhooks_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
GENERIC_ERROR_MESSAGE = StorefrontError.default_message
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title=f"{STORE_NAME} Storefront API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.state.rate_limiter = build_rate_limiter()

# Last added runs first: observability wraps the limiter so 429s are logged too.
app.add_middleware(RouteRateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Request-ID",
        "X-Order-Access-Token",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)
app.add_middleware(ObservabilityMiddleware)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("Request failed status=%s error=%s", exc.status_code, exc.message)
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("Request validation failed errors=%s", exc.errors())
    return JSONResponse(status_code=400, content={"error": "Dati della richiesta non validi"})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Richiesta non valida"
    if exc.status_code == 404 and message == "Not Found":
        message = "Risorsa non trovata"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": GENERIC_ERROR_MESSAGE})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": GENERIC_ERROR_MESSAGE})


def _bootstrap_initial_admin() -> None:
    admin_email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "").strip().lower()
    if not admin_email:
        logger.info("%s skipped: BOOTSTRAP_ADMIN_EMAIL not set", BOOTSTRAP_PREFIX)
        return

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == admin_email).first()
        if user is None:
            user = User(email=admin_email, full_name="Admin", role=ROLE_ADMIN)
            db.add(user)
            logger.info("%s creating email=%s", BOOTSTRAP_PREFIX, admin_email)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN
            logger.info("%s promoting id=%s", BOOTSTRAP_PREFIX, user.id)
        else:
            return
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        else:
            ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        _bootstrap_initial_admin()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


app.include_router(coupons_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(webhooks_router)
app.include_router(admin_orders_router)
app.include_router(admin_coupons_router)
app.include_router(email_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
