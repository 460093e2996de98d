import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import config
from db import create_db_and_tables, dispose_engine
from exceptions import CheckoutException
from jobs.notification_retry_job import notification_retry_scheduler
from services.notification import NotificationDispatcher
from services.order import OrderLifecycleService
from services.payment import StripePaymentGateway
from utils.error_handler import error_body, resolve_error
from utils.logging_config import setup_logging
from web.api_router import api_router


def create_app(order_lifecycle: OrderLifecycleService | None = None, run_background_jobs: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Tests pass their own lifecycle service (with fake gateway/notifier) and
    disable background jobs.
    """
    retry_task = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal retry_task

        # Startup
        await create_db_and_tables()
        logging.info("[Startup] Database ready")

        if run_background_jobs:
            retry_task = asyncio.create_task(
                notification_retry_scheduler(app.state.order_lifecycle.notification_dispatcher)
            )
            logging.info("[Startup] Notification retry scheduler started")

        yield

        # Shutdown
        logging.warning('Shutting down..')
        if retry_task is not None:
            retry_task.cancel()
            try:
                await retry_task
            except asyncio.CancelledError:
                logging.info("[Shutdown] Notification retry scheduler stopped")

        await app.state.order_lifecycle.notification_dispatcher.drain()
        await dispose_engine()
        logging.warning('Bye!')

    app = FastAPI(title="Kit Checkout", lifespan=lifespan)
    app.state.order_lifecycle = order_lifecycle or OrderLifecycleService(
        payment_gateway=StripePaymentGateway(),
        notification_dispatcher=NotificationDispatcher(),
    )
    app.include_router(api_router)

    # Health check endpoint (for container monitoring)
    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.exception_handler(CheckoutException)
    async def checkout_exception_handler(request: Request, exc: CheckoutException):
        status_code, _, _ = resolve_error(exc)
        logging.warning(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": error_body(exc)})

    @app.exception_handler(Exception)
    async def exception_handler(request: Request, exc: Exception):
        logging.error(f"Critical error caused by {exc}\n\nStack trace:\n{traceback.format_exc()}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


def main() -> None:
    setup_logging()
    uvicorn.run(create_app(), host=config.WEBAPP_HOST, port=config.WEBAPP_PORT)


if __name__ == "__main__":
    main()
