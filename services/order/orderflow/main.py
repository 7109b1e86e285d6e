import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from orderflow.version import VERSION
from orderflow.api import routes, payments
from orderflow.core.config import settings
from orderflow.core.errors import OrderError
from prometheus_fastapi_instrumentator import Instrumentator

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("orderflow")

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Order Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/order/metrics",
    should_gzip=True,
)

@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

# Health endpoints
@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/order/health")
def order_health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "order", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.debug("%s %s", sorted(route.methods), route.path)

# Include routers
app.include_router(routes.router, prefix="/order", tags=["orders"])
app.include_router(payments.router, prefix="/order", tags=["payments"])
