"""
Payment Service Component Tests

Golden reference tests for payment_service component testing.
"""

from .mocks import (
    MockPaymentProcessor,
    MockPaymentRepository,
)

__all__ = [
    "MockPaymentRepository",
    "MockPaymentProcessor",
]
