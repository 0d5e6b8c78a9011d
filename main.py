import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

import config
from errors import ServiceError
from migrate_db import init_db
from routers.account_pages import router as account_pages_router
from routers.admin_pages import router as admin_pages_router
from routers.api_router import api_router
from routers.common import error
from routers.pages_router import router as pages_router
from routers.templating import login_redirect, templates

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_PAGES = {400, 403, 404, 500, 503}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s is starting", config.APP_NAME)
    init_db()
    yield
    logger.info("%s is shutting down", config.APP_NAME)


app = FastAPI(
    title=config.APP_NAME,
    version=config.APP_VERSION,
    description=config.APP_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(
    SessionMiddleware,
    secret_key=config.SECRET_KEY,
    session_cookie=config.SESSION_COOKIE,
    max_age=config.SESSION_LIFETIME,
    same_site="lax",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Mount the uploads directory to serve files
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")
app.mount("/static", StaticFiles(directory=str(config.STATIC_DIR)), name="static")

app.include_router(api_router)
app.include_router(pages_router)
app.include_router(account_pages_router)
app.include_router(admin_pages_router)


def is_api(request: Request) -> bool:
    return request.url.path.startswith("/api")


def error_page(request: Request, status_code: int, message: str):
    """Error pages avoid the session so they also render outside its middleware"""
    code = status_code if status_code in ERROR_PAGES else 400 if status_code < 500 else 500
    context = {"user": None, "csrf_token": "", "flash": None, "message": message}
    return templates.TemplateResponse(request, f"errors/{code}.html", context, status_code=status_code)


@app.middleware("http")
async def maintenance_mode(request: Request, call_next):
    if config.MAINTENANCE_MODE and not request.url.path.startswith("/static"):
        if is_api(request):
            return error("Service temporarily unavailable", status.HTTP_503_SERVICE_UNAVAILABLE)
        return error_page(request, status.HTTP_503_SERVICE_UNAVAILABLE, "We'll be back shortly.")
    return await call_next(request)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if is_api(request):
        return error(exc.message, exc.status_code, exc.errors)
    return error_page(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if is_api(request):
        if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
            message = "Resource not found"
        return error(message, exc.status_code)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return login_redirect(request)
    return error_page(request, exc.status_code, message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        errors.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    if is_api(request):
        return error("Validation failed", status.HTTP_400_BAD_REQUEST, errors)
    return error_page(request, status.HTTP_400_BAD_REQUEST, "; ".join(errors))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if is_api(request):
        return error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return error_page(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Something went wrong on our end.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=config.DEVELOPMENT_MODE)
