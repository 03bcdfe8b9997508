"""
Billing Service - Contracts Package

Test data factory and request builders for billing_service.
"""

from .data_contract import (
    PERIOD_END,
    PERIOD_START,
    BillingTestDataFactory,
    GenerateInvoiceRequestBuilder,
)

__all__ = [
    "PERIOD_START",
    "PERIOD_END",
    "BillingTestDataFactory",
    "GenerateInvoiceRequestBuilder",
]
