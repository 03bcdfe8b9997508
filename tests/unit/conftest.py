"""
Unit Test Layer Configuration (Layer 4)

Structure:
    tests/unit/
    └── golden/      🔒 Characterization (pricing math, models, config)

Usage:
    pytest tests/unit -v                 # All unit tests
    pytest tests/unit -m golden -v       # By marker
"""
import os
import sys
from decimal import Decimal

import pytest

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from core.config import BillingConfig
from microservices.billing_service.pricing_engine import PricingEngine


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "golden: safety net tests - DO NOT MODIFY"
    )


@pytest.fixture
def billing_config() -> BillingConfig:
    """Default configuration with a 10% tax rate"""
    return BillingConfig(tax_rate=Decimal("0.10"))


@pytest.fixture
def pricing_engine(billing_config) -> PricingEngine:
    return PricingEngine(billing_config)
