"""
Payment Microservice API

Invoice charging, processor webhooks, refunds and payment methods REST API
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import BillingConfig, InfraConfig
from core.logger import setup_service_logger
from core.nats_client import get_event_bus
from core.postgres_client import get_postgres_client

from microservices.billing_service.models import Organization

from .events import get_event_handlers
from .factory import create_payment_service
from .models import (
    AttachPaymentMethodRequest,
    HealthResponse,
    NotificationResult,
    Payment,
    PaymentListResponse,
    RefundPaymentRequest,
)
from .payment_service import PaymentService
from .protocols import (
    BillingServiceError,
    Conflict,
    DependencyUnavailable,
    NotFoundError,
    PaymentDeclined,
    ValidationError,
)

logger = setup_service_logger("payment_service")

SERVICE_PORT = int(os.getenv("PAYMENT_SERVICE_PORT", "8207"))

# Globals
payment_service: Optional[PaymentService] = None
db = None
event_bus = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    global payment_service, db, event_bus

    config = BillingConfig.from_env()
    infra_config = InfraConfig.from_env()

    try:
        db = await get_postgres_client("payment_service", config=infra_config)

        try:
            event_bus = await get_event_bus("payment_service", config=infra_config)
            logger.info("✅ Event bus initialized successfully")
        except Exception as e:
            logger.warning(f"⚠️  Failed to initialize event bus: {e}. Continuing without event publishing.")
            event_bus = None

        payment_service = await create_payment_service(
            config=config, infra_config=infra_config, db=db, event_bus=event_bus
        )

        if event_bus:
            try:
                for pattern, handler in get_event_handlers(payment_service).items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern, handler=handler, durable="payment-auto-charge"
                    )
                logger.info("✅ Event handlers registered successfully")
            except Exception as e:
                logger.error(f"⚠️  Failed to register event handlers: {e}")

        logger.info(f"✅ Payment Service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize payment service: {e}")
        raise
    finally:
        if payment_service and payment_service.notification_client:
            await payment_service.notification_client.close()

        if event_bus:
            try:
                await event_bus.close()
                logger.info("Payment event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if db:
            await db.close()

        logger.info("Payment Service shutting down...")


app = FastAPI(
    title="Payment Service",
    description="Off-session invoice charging, processor reconciliation and refunds",
    version="1.0.0",
    lifespan=lifespan,
)


# ====================
# Dependency injection
# ====================

async def get_payment_service() -> PaymentService:
    if not payment_service:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return payment_service


# ====================
# Error mapping
# ====================

def error_status(exc: BillingServiceError) -> int:
    if isinstance(exc, PaymentDeclined):
        return 402
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, DependencyUnavailable):
        return 503
    return 500


@app.exception_handler(BillingServiceError)
async def payment_error_handler(request: Request, exc: BillingServiceError):
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path} rejected: {exc}")

    content = {"error": exc.__class__.__name__, "detail": str(exc)}
    if isinstance(exc, PaymentDeclined):
        content["failure_code"] = exc.failure_code
        if exc.payment:
            content["payment_id"] = exc.payment.payment_id
    return JSONResponse(status_code=status_code, content=content)


# ====================
# Health
# ====================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    dependencies = {
        "database": "healthy" if db and await db.health_check() else "unhealthy",
        "event_bus": "healthy" if event_bus and event_bus.is_connected else "unavailable",
    }
    return HealthResponse(
        status="healthy" if dependencies["database"] == "healthy" else "degraded",
        service="payment_service",
        port=SERVICE_PORT,
        version="1.0.0",
        dependencies=dependencies,
    )


# ====================
# Payments
# ====================

@app.post("/api/v1/payments/invoices/{invoice_id}/charge", response_model=Payment)
async def charge_invoice(
    invoice_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Charge the invoice against the organization's default payment method"""
    return await service.charge_invoice(invoice_id)


@app.post("/api/v1/payments/{payment_id}/refund", response_model=Payment)
async def refund_payment(
    payment_id: str,
    request: RefundPaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.refund_payment(payment_id, amount=request.amount, reason=request.reason)


@app.get("/api/v1/payments/{payment_id}", response_model=Payment)
async def get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.get_payment(payment_id)


@app.get("/api/v1/payments", response_model=PaymentListResponse)
async def list_payments(
    organization_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: PaymentService = Depends(get_payment_service),
):
    payments = await service.list_payments(organization_id, limit=limit, offset=offset)
    return PaymentListResponse(payments=payments, count=len(payments), limit=limit, offset=offset)


# ====================
# Customers and payment methods
# ====================

@app.post("/api/v1/payments/organizations/{organization_id}/customer", response_model=Organization)
async def create_customer(
    organization_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.create_customer(organization_id)


@app.post("/api/v1/payments/organizations/{organization_id}/payment-methods", response_model=Organization)
async def attach_payment_method(
    organization_id: str,
    request: AttachPaymentMethodRequest,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.attach_payment_method(
        organization_id, request.payment_method_id, set_default=request.set_default
    )


# ====================
# Webhooks
# ====================

@app.post("/api/v1/payments/webhooks/stripe", response_model=NotificationResult)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    service: PaymentService = Depends(get_payment_service),
):
    """Verify and reconcile a Stripe event; duplicates and unknown payments are acknowledged"""
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    payload = await request.body()
    return await service.handle_stripe_webhook(payload, stripe_signature)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "microservices.payment_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
