"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers (Top-Down TDD):
    - component/  : Component tests (services with mocked dependencies)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys
from typing import Any

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_line_items_sum_to_total(invoice_or_calc: Any):
        """Line items of an invoice or charge calculation must add up to its total"""
        total = getattr(invoice_or_calc, "total_amount", None)
        if total is None:
            total = invoice_or_calc.total
        items_sum = sum(item.amount for item in invoice_or_calc.line_items)
        assert items_sum == total, f"Line items sum to {items_sum}, total is {total}"


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "golden: safety net tests - DO NOT MODIFY")
