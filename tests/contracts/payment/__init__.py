"""
Payment Service - Contracts Package

Test data factory for payment_service.
"""

from .data_contract import PaymentTestDataFactory

__all__ = ["PaymentTestDataFactory"]
