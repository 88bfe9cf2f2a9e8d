"""
api/app.py
----------
FastAPI application factory for the recurring payments HTTP surface.
Run with:
    python -m api.app
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException

from api import recurring_routes
from config import API_HOST, API_PORT
from services.exceptions import RecurBudgetError
from utils.logger import get_logger

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app() -> FastAPI:
    """Build the FastAPI app with routers and error mapping."""
    app = FastAPI(title="RecurBudget")

    @app.exception_handler(RecurBudgetError)
    async def handle_domain_error(request: Request, exc: RecurBudgetError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def handle_http_error(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def handle_request_error(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request")

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}")
        return _error(500, "Server error")

    app.include_router(recurring_routes.router)

    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        return "ok"

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    from db.connection import init_pool
    from db.init_db import create_tables

    init_pool()
    create_tables()
    uvicorn.run(app, host=API_HOST, port=API_PORT)
