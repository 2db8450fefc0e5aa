"""
Pytest configuration.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and wires the services against the
in-memory fakes in `fakes.py`.
"""

import sys
from pathlib import Path

import pytest

# Project root first, then this directory for the fakes/factories helpers
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from factories import ADMIN_ID, FixedClock  # noqa: E402
from fakes import (  # noqa: E402
    FakeAuctionRepository,
    FakeBuyerRepository,
    FakeGateway,
    FakeInvoiceRepository,
    FakeNotificationRepository,
    FakePaymentAttemptRepository,
    FakePublisher,
    FakeSettlementRepository,
)
from services.invoice_dispatch_service import BatchInvoiceDispatcher  # noqa: E402
from services.invoice_service import InvoiceLifecycleManager  # noqa: E402
from services.notification_service import NotificationDispatcher  # noqa: E402
from services.payment_reconciler import PaymentReconciler  # noqa: E402
from services.settlement_service import SettlementCalculator  # noqa: E402


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def invoice_repo() -> FakeInvoiceRepository:
    return FakeInvoiceRepository()


@pytest.fixture
def auction_repo() -> FakeAuctionRepository:
    return FakeAuctionRepository()


@pytest.fixture
def buyer_repo() -> FakeBuyerRepository:
    return FakeBuyerRepository(admin_ids=[ADMIN_ID])


@pytest.fixture
def attempt_repo() -> FakePaymentAttemptRepository:
    return FakePaymentAttemptRepository()


@pytest.fixture
def settlement_repo() -> FakeSettlementRepository:
    return FakeSettlementRepository()


@pytest.fixture
def notification_repo() -> FakeNotificationRepository:
    return FakeNotificationRepository()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier(notification_repo, publisher, buyer_repo, clock) -> NotificationDispatcher:
    return NotificationDispatcher(notification_repo, publisher, buyer_repo.list_admin_ids, clock=clock)


@pytest.fixture
def manager(invoice_repo, auction_repo, notifier, clock) -> InvoiceLifecycleManager:
    return InvoiceLifecycleManager(invoice_repo, auction_repo, notifier=notifier, clock=clock)


@pytest.fixture
def reconciler(manager, buyer_repo, attempt_repo, gateway, clock) -> PaymentReconciler:
    return PaymentReconciler(
        manager,
        buyer_repo,
        attempt_repo,
        gateway,
        app_base_url="https://auctions.example.com",
        clock=clock,
    )


@pytest.fixture
def dispatcher(manager, reconciler, buyer_repo, notifier) -> BatchInvoiceDispatcher:
    return BatchInvoiceDispatcher(manager, reconciler, buyer_repo, notifier)


@pytest.fixture
def calculator(auction_repo, settlement_repo, notifier, clock) -> SettlementCalculator:
    return SettlementCalculator(auction_repo, settlement_repo, notifier=notifier, clock=clock)
