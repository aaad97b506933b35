from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from po_portal.routers import companies, freeagent, projects, purchase_orders, supplier_portal
from po_portal.config import Settings, settings as default_settings
from po_portal.errors import AppError, PersistenceError
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.freeagent_oauth import FreeAgentOAuth
from po_portal.services.gmail_service import GmailService
from po_portal.services.storage_service import StorageService
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def parse_cors_origins(origins_str: str) -> list:
    """Parse a comma-separated CORS origins string into a list"""
    return [origin.strip() for origin in (origins_str or "").split(",") if origin.strip()]


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid request: {location}: {first.get('msg', 'invalid value')}" if location else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": "validation_error", "details": {"errors": jsonable_errors(errors)}},
    )


def jsonable_errors(errors) -> list:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
        for error in errors
    ]


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    error = PersistenceError("Database error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "internal_error"},
    )


def create_app(
    settings: Settings = None,
    storage: StorageService = None,
    email_sender=None,
    oauth: FreeAgentOAuth = None,
    client_factory: FreeAgentClientFactory = None,
) -> FastAPI:
    """Build the API with its clients; anything not passed in is built from settings"""
    settings = settings or default_settings

    logger.info("=" * 60)
    logger.info("Starting Purchase Order Portal API")
    logger.info("=" * 60)
    logger.info(f"FreeAgent API: {settings.freeagent_api_base_url}")
    logger.info(f"FreeAgent OAuth configured: {bool(settings.freeagent_client_id and settings.freeagent_client_secret)}")
    logger.info(f"S3 storage configured: {bool(settings.storage_access_key_id and settings.storage_secret_access_key)}")
    logger.info("=" * 60)

    app = FastAPI(
        title="Purchase Order Portal API",
        description="Purchase orders, supplier portal and FreeAgent billing",
        version="1.0.0"
    )

    oauth = oauth or FreeAgentOAuth(settings)
    app.state.settings = settings
    app.state.storage = storage or StorageService(settings)
    app.state.email_sender = email_sender or GmailService(settings)
    app.state.oauth = oauth
    app.state.client_factory = client_factory or FreeAgentClientFactory(settings, oauth)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(settings.cors_origins) or DEFAULT_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Include routers
    app.include_router(purchase_orders.router)
    app.include_router(supplier_portal.router)
    app.include_router(projects.router)
    app.include_router(freeagent.router)
    app.include_router(companies.router)

    @app.get("/")
    def root():
        return {"message": "Purchase Order Portal API", "version": "1.0.0"}

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
