import logging
import uuid
from time import monotonic

from fastapi import Depends, FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.cron import router as cron_router
from app.api.deps import require_user_auth
from app.api.payments import router as payments_router
from app.api.payments import webhook_router as payments_webhook_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.metrics import REQUEST_COUNT, REQUEST_LATENCY

app = FastAPI(title="Invoice Settlement API")
logger = logging.getLogger(__name__)

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    start = monotonic()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", None) or "unmatched"
    status = str(response.status_code)
    REQUEST_COUNT.labels(method=request.method, path=path, status=status).inc()
    REQUEST_LATENCY.labels(method=request.method, path=path, status=status).observe(
        monotonic() - start
    )
    response.headers["x-request-id"] = request.state.request_id
    return response


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(payments_router, dependencies=[Depends(require_user_auth)])
# Signature-verified, no bearer auth.
_include_api_router(payments_webhook_router)
_include_api_router(cron_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
