from fastapi import FastAPI

from esgreport_api.api.v1.endpoints.webhooks import STRIPE_WEBHOOK_PATH
from esgreport_api.api.v1.router import router as v1_router
from esgreport_api.core.logging import configure_logging
from esgreport_api.core.settings import get_settings
from esgreport_api.middleware.cors import RouteScopedCORSMiddleware
from esgreport_api.middleware.request_id import RequestIDMiddleware

API_PREFIX = "/api/v1"

configure_logging()
settings = get_settings()

app = FastAPI(title="ESG Report Billing API")

# Stripe webhook preflights are answered by the route with wildcard headers.
app.add_middleware(
    RouteScopedCORSMiddleware,
    exempt_paths=[f"{API_PREFIX}{STRIPE_WEBHOOK_PATH}"],
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Client-Info", "Apikey"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)

app.include_router(v1_router, prefix=API_PREFIX)


@app.get("/healthz")
def root_healthz() -> dict[str, str]:
    return {"status": "ok"}
