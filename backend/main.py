from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from api.v1 import auth, users
from core.config import settings
from core.errors import ApiError, InternalFault, ValidationFailure
from db.mongodb import close_mongo_client, get_mongo_db, init_mongo_indexes
from utils.logging_config import configure_logging, RequestContextMiddleware

# Configure logging with date-based files and TTL retention
logger = configure_logging("mediahub")

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.USE_MONGO:
        try:
            await init_mongo_indexes()
            logger.info("Mongo indexes ensured")
        except Exception as e:
            logger.warning(f"Mongo init skipped or failed: {e}")
    else:
        logger.info("USE_MONGO=false; serving from the in-memory store")
    logger.info("Application startup complete")
    yield
    close_mongo_client()
    logger.info("Application shutdown complete")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} at {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} at {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationFailure.default_message
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))

# Malformed or missing request fields render as ValidationFailure
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailure(_first_validation_message(exc))
    logger.info(f"{error.kind} at {request.url.path}: {error.message}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

# Global exception handler; internal messages never reach the client
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error at {request.url.path}: {exc!r}")
    fault = InternalFault()
    return JSONResponse(status_code=fault.status_code, content=fault.to_dict())

# Add GZip compression for larger JSON payloads
app.add_middleware(GZipMiddleware, minimum_size=500)

# Add logging context middleware to capture user_id and API path
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/users", tags=["Authentication"])
app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["Users"])

@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}

@app.get("/health")
async def health_check():
    if not settings.USE_MONGO:
        return {"status": "healthy", "database": "memory"}
    try:
        db = get_mongo_db()
        if db is not None:
            await db.command({"ping": 1})
            return {"status": "healthy", "database": "mongo_connected"}
    except Exception as e:
        logger.warning(f"Health Mongo check failed: {e}")
    return {"status": "degraded", "database": "mongo_unavailable"}
