"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadrelay.core.config import settings
from leadrelay.core.exceptions import LeadRelayError
from leadrelay.core.structured_logging import build_log_context
from leadrelay.db.session import engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # phone numbers and emails stay out of Sentry
    )
    logger.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from leadrelay.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="LeadRelay API",
    description="Lead response automation, client portal, and agency dashboard API",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Cookies carry both sessions, so credentials must be allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


# ============================================================================
# Error responses: every failure body is {"error": message}
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid input", "details": details})


@app.exception_handler(LeadRelayError)
async def domain_exception_handler(request: Request, exc: LeadRelayError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error",
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================================
# Routers
# ============================================================================

from leadrelay.routers import auth, client_auth, client, cron, leads, payments, sequences, webhooks

# Agency dashboard sign-in
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

# Client portal
app.include_router(client_auth.router, prefix="/api/client/auth", tags=["client-auth"])
app.include_router(client.router, prefix="/api/client", tags=["client"])
app.include_router(leads.router, prefix="/api/client/leads", tags=["client-leads"])
app.include_router(sequences.router, prefix="/api/client/sequences", tags=["client-leads"])
app.include_router(payments.router, prefix="/api/client/payments", tags=["client-payments"])

# Agency dashboard
from leadrelay.routers import (
    admin_agency,
    admin_clients,
    admin_coupons,
    admin_integrations,
    admin_phone_numbers,
    admin_plans,
    admin_roles,
    admin_team,
    escalations,
)
app.include_router(admin_clients.router, prefix="/api/admin/clients", tags=["admin-clients"])
app.include_router(admin_roles.router, prefix="/api/admin/roles", tags=["admin-roles"])
app.include_router(admin_team.router, prefix="/api/admin/team", tags=["admin-team"])
app.include_router(admin_coupons.router, prefix="/api/admin/coupons", tags=["admin-billing"])
app.include_router(admin_plans.router, prefix="/api/admin/plans", tags=["admin-billing"])
app.include_router(admin_agency.router, prefix="/api/admin/agency", tags=["admin-agency"])
app.include_router(admin_phone_numbers.router, prefix="/api/admin/phone-numbers", tags=["admin-phones"])
app.include_router(admin_integrations.router, prefix="/api/admin", tags=["admin-integrations"])
app.include_router(escalations.router, prefix="/api/admin", tags=["escalations"])

# Scheduled jobs (protected by CRON_SECRET)
app.include_router(cron.router, prefix="/api/cron", tags=["cron"])

# Stripe and Twilio callbacks
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
