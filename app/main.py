import logging
import uuid

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api.orders import router as orders_router
from app.api.payment_webhooks import router as payment_webhooks_router
from app.api.payments import router as payments_router
from app.errors import register_error_handlers
from app.logging import configure_logging

app = FastAPI(title="Payment reconciliation API")
logger = logging.getLogger(__name__)

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


# Provider callbacks authenticate by signature, not by API credentials
app.include_router(payment_webhooks_router)
_include_api_router(payments_router)
_include_api_router(orders_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
