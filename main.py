import time
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from database import get_db
import settings
from addresses import router as addresses_router
from admin import router as admin_router
from artworks import router as artworks_router
from auth import ensure_admin, router as auth_router
from cart import router as cart_router
from errors import AppError, AuthError
from logging_config import configure_logging
from orders import router as orders_router
from security import authenticate, bearer_token
from users import require_admin, router as users_router

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("database_not_configured")
    else:
        database.ensure_indexes(database.db)
        if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
            ensure_admin(database.db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    yield


app = FastAPI(title="BRANA Arts API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def identify_caller(request: Request, call_next):
    # Resolve the bearer token if there is one. A bad token does not fail the
    # request here; protected routes reject it through get_current_user.
    request.state.identity = None
    request.state.auth_error = None
    token = bearer_token(request.headers.get("authorization"))
    if token:
        try:
            request.state.identity = authenticate(token)
        except AuthError as e:
            request.state.auth_error = e.message
            logger.debug("token_rejected", reason=e.message, path=request.url.path)
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 1)
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=duration_ms,
        client=request.client.host if request.client else None,
    )
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.__class__.__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"detail": "; ".join(problems) or "Invalid request", "error": "ValidationError"},
    )


# Saved addresses live under /orders/addresses, so they must be registered
# before /orders/{order_id}.
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(artworks_router)
app.include_router(cart_router)
app.include_router(addresses_router)
app.include_router(orders_router)
app.include_router(admin_router)


@app.get("/")
def read_root():
    return {"message": "BRANA Arts API"}


@app.get("/test")
def diagnostics(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    """Database reachability and collections, for operators."""
    try:
        collections = sorted(db.list_collection_names())
    except PyMongoError as e:
        logger.error("diagnostics_failed", error=str(e))
        return {"backend": "running", "database": "error", "error": str(e)[:80]}
    return {"backend": "running", "database": "connected", "database_name": db.name, "collections": collections}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
