"""
Billing Microservice API

Invoice generation, preview and lifecycle REST API
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import BillingConfig, InfraConfig
from core.logger import setup_service_logger
from core.nats_client import get_event_bus
from core.postgres_client import get_postgres_client

from .factory import create_invoice_service
from .invoice_service import InvoiceService
from .models import (
    GenerateInvoiceRequest,
    HealthResponse,
    Invoice,
    InvoiceListResponse,
    InvoiceStatus,
    MarkInvoicePaidRequest,
)
from .protocols import (
    BillingServiceError,
    Conflict,
    DependencyUnavailable,
    NotFoundError,
    ValidationError,
)

logger = setup_service_logger("billing_service")

SERVICE_PORT = int(os.getenv("BILLING_SERVICE_PORT", "8216"))

# Globals
invoice_service: Optional[InvoiceService] = None
db = None
event_bus = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    global invoice_service, db, event_bus

    config = BillingConfig.from_env()
    infra_config = InfraConfig.from_env()

    try:
        db = await get_postgres_client("billing_service", config=infra_config)

        try:
            event_bus = await get_event_bus("billing_service", config=infra_config)
            logger.info("✅ Event bus initialized successfully")
        except Exception as e:
            logger.warning(f"⚠️  Failed to initialize event bus: {e}. Continuing without event publishing.")
            event_bus = None

        invoice_service = await create_invoice_service(
            config=config, infra_config=infra_config, db=db, event_bus=event_bus
        )

        logger.info(f"Billing service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize billing service: {e}")
        raise
    finally:
        if invoice_service and invoice_service.notification_client:
            await invoice_service.notification_client.close()

        if event_bus:
            try:
                await event_bus.close()
                logger.info("Billing event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if db:
            await db.close()
            logger.info("Billing service database connections closed")


app = FastAPI(
    title="Billing Service",
    description="Usage-based invoicing: generation, preview and lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)


# ====================
# Dependency injection
# ====================

async def get_invoice_service() -> InvoiceService:
    if not invoice_service:
        raise HTTPException(status_code=503, detail="Billing service not initialized")
    return invoice_service


# ====================
# Error mapping
# ====================

def error_status(exc: BillingServiceError) -> int:
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
async def billing_error_handler(request: Request, exc: BillingServiceError):
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.__class__.__name__, "detail": str(exc)},
    )


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
        service="billing_service",
        port=SERVICE_PORT,
        version="1.0.0",
        dependencies=dependencies,
    )


# ====================
# Invoice API
# ====================

@app.post("/api/v1/billing/invoices", response_model=Invoice, status_code=201)
async def generate_invoice(
    request: GenerateInvoiceRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Generate the invoice for a subscription's current period"""
    return await service.generate_invoice(request.subscription_id)


@app.get("/api/v1/billing/subscriptions/{subscription_id}/upcoming-invoice", response_model=Invoice)
async def get_upcoming_invoice(
    subscription_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Preview the in-progress period's invoice (nothing persisted)"""
    return await service.get_upcoming_invoice(subscription_id)


@app.get("/api/v1/billing/invoices/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.get_invoice(invoice_id)


@app.get("/api/v1/billing/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    organization_id: str,
    status: Optional[InvoiceStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoices = await service.list_invoices(organization_id, status=status, limit=limit, offset=offset)
    return InvoiceListResponse(invoices=invoices, count=len(invoices), limit=limit, offset=offset)


@app.post("/api/v1/billing/invoices/{invoice_id}/finalize", response_model=Invoice)
async def finalize_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.finalize_invoice(invoice_id)


@app.post("/api/v1/billing/invoices/{invoice_id}/void", response_model=Invoice)
async def void_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.void_invoice(invoice_id)


@app.post("/api/v1/billing/invoices/{invoice_id}/mark-paid", response_model=Invoice)
async def mark_invoice_paid(
    invoice_id: str,
    request: MarkInvoicePaidRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Record an out-of-band payment"""
    return await service.mark_paid(invoice_id, amount_paid=request.amount_paid, paid_at=request.paid_at)


@app.post("/api/v1/billing/invoices/{invoice_id}/uncollectible", response_model=Invoice)
async def mark_invoice_uncollectible(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.mark_uncollectible(invoice_id)


@app.post("/api/v1/billing/invoices/overdue/process")
async def process_overdue_invoices(service: InvoiceService = Depends(get_invoice_service)):
    """Sweep open invoices past due; intended for a scheduler"""
    count = await service.process_overdue_invoices()
    return {"overdue_invoices": count}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "microservices.billing_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
