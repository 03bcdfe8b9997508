#!/usr/bin/env python3
"""Billing engine configuration

Invoice numbering and due dates, tax, usage aggregation, feature flags,
notification delivery and payment processor settings.
"""
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default

def _decimal(val: str, default: Decimal) -> Decimal:
    try:
        return Decimal(val) if val else default
    except InvalidOperation:
        return default


@dataclass
class BillingConfig:
    """Billing engine settings"""

    # ===========================================
    # Invoices
    # ===========================================
    invoice_due_days: int = 30
    invoice_number_prefix: str = "INV-"
    tax_rate: Decimal = Decimal("0.00")
    default_currency: str = "USD"
    invoice_number_max_retries: int = 5

    # ===========================================
    # Usage aggregation
    # ===========================================
    usage_query_timeout_seconds: float = 10.0

    # ===========================================
    # Feature flags
    # ===========================================
    enable_auto_payment: bool = True
    enable_usage_metrics: bool = True
    enable_tiered_pricing: bool = True
    enable_multi_currency: bool = False
    enable_credits: bool = True
    enable_proration: bool = True

    # ===========================================
    # Notifications
    # ===========================================
    notification_service_url: Optional[str] = None
    notification_retry_attempts: int = 3
    notification_retry_delay_seconds: float = 5.0
    notification_timeout_seconds: float = 30.0

    # ===========================================
    # Payment processor (Stripe)
    # ===========================================
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    payment_processor_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> 'BillingConfig':
        """Load billing config from environment"""
        return cls(
            invoice_due_days=_int(os.getenv("INVOICE_DUE_DAYS", "30"), 30),
            invoice_number_prefix=os.getenv("INVOICE_NUMBER_PREFIX", "INV-"),
            tax_rate=_decimal(os.getenv("INVOICE_TAX_RATE", "0.00"), Decimal("0.00")),
            default_currency=os.getenv("INVOICE_DEFAULT_CURRENCY", "USD").upper(),
            invoice_number_max_retries=_int(os.getenv("INVOICE_NUMBER_MAX_RETRIES", "5"), 5),

            usage_query_timeout_seconds=_float(os.getenv("USAGE_QUERY_TIMEOUT_SECONDS", "10"), 10.0),

            enable_auto_payment=_bool(os.getenv("FEATURE_AUTO_PAYMENT", "true")),
            enable_usage_metrics=_bool(os.getenv("FEATURE_USAGE_METRICS", "true")),
            enable_tiered_pricing=_bool(os.getenv("FEATURE_TIERED_PRICING", "true")),
            enable_multi_currency=_bool(os.getenv("FEATURE_MULTI_CURRENCY", "false")),
            enable_credits=_bool(os.getenv("FEATURE_CREDITS", "true")),
            enable_proration=_bool(os.getenv("FEATURE_PRORATION", "true")),

            notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL"),
            notification_retry_attempts=_int(os.getenv("NOTIFICATION_RETRY_ATTEMPTS", "3"), 3),
            notification_retry_delay_seconds=_float(os.getenv("NOTIFICATION_RETRY_DELAY_SECONDS", "5"), 5.0),
            notification_timeout_seconds=_float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "30"), 30.0),

            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            payment_processor_timeout_seconds=_float(os.getenv("PAYMENT_PROCESSOR_TIMEOUT_SECONDS", "30"), 30.0),
        )

    def validate(self) -> None:
        """Raise ValueError if the configuration cannot produce correct invoices"""
        if self.invoice_due_days <= 0:
            raise ValueError("invoice_due_days must be positive")
        if not self.invoice_number_prefix:
            raise ValueError("invoice_number_prefix must not be empty")
        if self.tax_rate < 0 or self.tax_rate >= 1:
            raise ValueError("tax_rate must be in [0, 1)")
        if len(self.default_currency) != 3 or not self.default_currency.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO 4217 code")
        if self.invoice_number_max_retries < 1:
            raise ValueError("invoice_number_max_retries must be at least 1")
        if self.notification_retry_attempts < 1:
            raise ValueError("notification_retry_attempts must be at least 1")
        if self.notification_retry_delay_seconds < 0:
            raise ValueError("notification_retry_delay_seconds must not be negative")
        if self.payment_processor_timeout_seconds <= 0:
            raise ValueError("payment_processor_timeout_seconds must be positive")
