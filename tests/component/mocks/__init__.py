"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (database, NATS).
"""

from .db_mock import MockAsyncPostgresClient, MockConnection
from .nats_mock import MockEvent, MockEventBus
from .transaction_mock import MockTransaction, mock_transaction, track_write

# Service-specific mocks live in tests/component/golden/{service}/mocks.py

__all__ = [
    'MockAsyncPostgresClient',
    'MockConnection',
    'MockEventBus',
    'MockEvent',
    'MockTransaction',
    'mock_transaction',
    'track_write',
]
