import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import auth_router
from budget_router import budget_router
from config import Config
from database import init_db, utcnow
from errors import FinanceError, UpstreamError
from router import router
from scheduler import create_scheduler
from subscription_router import subscription_router

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if Config.SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Scheduler started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


app = FastAPI(title="Personal Finance Tracker API", lifespan=lifespan)


def _failure(status_code, message, error=None):
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    if isinstance(exc, UpstreamError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.__cause__ or exc)
        return _failure(exc.status_code, "Server error", exc.message if Config.DEBUG else None)
    return _failure(exc.status_code, exc.message, exc.field)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return _failure(400, "; ".join(problems), "ValidationError")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = _failure(exc.status_code, str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _failure(500, "Server error", str(exc) if Config.DEBUG else None)


app.include_router(router, prefix="/api", tags=["expenses"])
app.include_router(budget_router, prefix="/api", tags=["budgets"])
app.include_router(subscription_router, prefix="/api", tags=["subscriptions"])
app.include_router(auth_router, prefix="/auth", tags=["authentication"])


@app.get("/api/health")
def health():
    return {"success": True, "message": "Server is running", "timestamp": utcnow().isoformat()}


@app.get("/")
def home():
    return {
        "success": True,
        "message": "Welcome to Personal Finance Tracker API",
        "endpoints": {
            "auth": "/auth",
            "expenses": "/api/expenses",
            "subscriptions": "/api/subscriptions",
            "budgets": "/api/budgets",
        },
    }


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
