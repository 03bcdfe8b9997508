"""
Payment Service Clients Module

External processor integration
"""

from .stripe_processor import StripePaymentProcessor

__all__ = [
    "StripePaymentProcessor",
]
