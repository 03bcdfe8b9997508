#!/usr/bin/env python3
"""
Core Module for the Billing Engine

Shared infrastructure for the billing and payment services.

COMPONENTS:
    - config/: dataclass configuration loaded from environment
    - logger.py: service logger setup
    - money.py: Decimal rounding helpers
    - nats_client.py: NATS event bus for event-driven architecture
    - postgres_client.py: asyncpg client with transaction support
    - service_client_base.py: httpx base client for internal services

USAGE:
    from core.config import BillingConfig
    from core.nats_client import get_event_bus

    config = BillingConfig.from_env()
    event_bus = await get_event_bus("billing_service")
"""
