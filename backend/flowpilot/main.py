# /flowpilot/main.py

import os
import time
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from flowpilot.config.settings import settings
from flowpilot.utils.lifecycle import lifespan
from flowpilot.utils.logging import bind_request_context
from flowpilot.utils.metrics import response_time_histogram
from flowpilot.utils.rate_limiter import limiter
from flowpilot.routes import public, sessions

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Parses AI workflow-builder responses and applies them to copilot sessions",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=f"/api/{settings.api_version}/redoc" if settings.environment != "production" else None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SlowAPIMiddleware)

@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    bind_request_context(request.method, request.url.path)
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    route = request.scope.get("route")
    # Label by route template so per-session URLs don't explode cardinality
    endpoint = getattr(route, "path", request.url.path)
    response_time_histogram.labels(endpoint=endpoint).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response

# --- API Routers ---
app.include_router(public.router)
app.include_router(sessions.router, prefix=f"/api/{settings.api_version}")

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    uvicorn.run(
        "flowpilot.main:app",
        host=host,
        port=port,
        reload=True if settings.environment == "development" else False,
        workers=settings.workers if settings.environment == "production" else 1
    )
