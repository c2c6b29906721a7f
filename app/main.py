import logging
from contextlib import asynccontextmanager
import traceback
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from app.core.config import settings
from app.core.errors import PaymentGatewayError
from app.db.session import create_db_and_tables

from app.routers.auth_router import router as auth_router
from app.routers.payment_router import router as payment_router
from app.routers.report_router import router as report_router

logging.basicConfig(
    filename=settings.LOG_FILE or None,
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("Provisioning database, tables and payment channels...")
        create_db_and_tables()
        logger.info("Database provisioning completed")
    except Exception as e:
        # Requests retry provisioning through get_session, so startup keeps going.
        logger.error(f"Error during application startup: {str(e)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

    yield

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

def _first_message(errors: list) -> str:
    return errors[0].get("msg", "Validation Error") if errors else "Validation Error"

@app.exception_handler(PaymentGatewayError)
async def payment_gateway_exception_handler(request: Request, exc: PaymentGatewayError):
    logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message}
    )

@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Database error"}
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {str(exc)}")
    logger.error(f"Traceback: {traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.warning(f"Request validation failed on {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"detail": _first_message(errors)})

@app.exception_handler(ValidationError)
async def form_validation_exception_handler(request: Request, exc: ValidationError):
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    logger.warning(f"Form validation failed on {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"detail": _first_message(errors), "errors": errors})

app.include_router(payment_router)
app.include_router(auth_router)
app.include_router(report_router)

@app.get("/", include_in_schema=False)
@app.head("/", include_in_schema=False)
def root():
    return RedirectResponse(url="/account/login")
