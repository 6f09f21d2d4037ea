"""
Pytest configuration and fixtures for Arrow Ledger tests.

Everything runs against the in-memory stores; no network.
"""

from decimal import Decimal

import pytest

from arrow_ledger.audit import AuditLogger
from arrow_ledger.config import LedgerSettings
from arrow_ledger.ledger import LedgerService
from arrow_ledger.models import Actor, Role, TransactionCategory
from arrow_ledger.services.storage import InMemoryAuditStorage, InMemoryTransactionStorage


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        default_page_size=100,
        max_page_size=500,
        audit_page_size=50,
        rank_staging_offset=1_000_000,
    )


@pytest.fixture
def transaction_storage():
    return InMemoryTransactionStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger(transaction_storage, audit_logger, ledger_settings):
    return LedgerService(
        storage=transaction_storage,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )


@pytest.fixture
def admin():
    return Actor(user_id="user-admin", role=Role.ADMIN)


@pytest.fixture
def taylor():
    return Actor(user_id="user-taylor", role=Role.TAYLOR)


@pytest.fixture
def dad():
    return Actor(user_id="user-dad", role=Role.DAD)


@pytest.fixture
def seed(ledger, admin):
    """
    Async helper: create `count` transactions dated 01/01/2024, 02/01/2024, ...

    Returned in creation order, so ranks are 1..count and the display
    order is the reverse of the returned list.
    """
    async def _seed(count, category=TransactionCategory.DEPOSIT, month=1):
        created = []
        for i in range(count):
            created.append(await ledger.create_transaction(
                admin,
                date=f"{i + 1:02d}/{month:02d}/2024",
                category=category,
                amount=Decimal(10 * (i + 1)),
                notes=f"seed {i + 1}",
            ))
        return created
    return _seed
