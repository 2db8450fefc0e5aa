"""
Service wiring.

Builds every client and service from Settings once, at process start. The
API lifespan and the operator scripts both go through `build_services`;
tests construct the services directly with fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from config.settings import Settings
from integrations.realtime import RedisPublisher
from integrations.stripe_gateway import StripeGateway
from repositories.auction_repository import AuctionRepository
from repositories.buyer_repository import BuyerRepository
from repositories.client import create_supabase_client
from repositories.invoice_repository import InvoiceRepository
from repositories.notification_repository import NotificationRepository
from repositories.payment_attempt_repository import PaymentAttemptRepository
from repositories.settlement_repository import SettlementRepository
from services.invoice_dispatch_service import BatchInvoiceDispatcher
from services.invoice_service import InvoiceLifecycleManager
from services.notification_service import NotificationDispatcher
from services.payment_reconciler import PaymentReconciler
from services.settlement_service import SettlementCalculator
from services.webhook_service import GatewayWebhookHandler

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    invoices: InvoiceLifecycleManager
    dispatcher: BatchInvoiceDispatcher
    settlements: SettlementCalculator
    webhooks: GatewayWebhookHandler
    notifier: NotificationDispatcher
    buyers: BuyerRepository
    gateway: StripeGateway
    publisher: RedisPublisher

    def close(self) -> None:
        self.gateway.close()
        self.publisher.close()


def build_services(settings: Settings) -> BillingServices:
    client = create_supabase_client(settings)
    gateway = StripeGateway.from_settings(settings)
    publisher = RedisPublisher.from_settings(settings)

    buyers = BuyerRepository(client)
    auctions = AuctionRepository(client)
    notifier = NotificationDispatcher(
        NotificationRepository(client),
        publisher,
        buyers.list_admin_ids,
        currency=settings.currency,
    )
    invoices = InvoiceLifecycleManager(InvoiceRepository(client), auctions, notifier=notifier)
    reconciler = PaymentReconciler(
        invoices,
        buyers,
        PaymentAttemptRepository(client),
        gateway,
        currency=settings.currency,
        app_base_url=settings.app_base_url,
        claim_ttl=timedelta(seconds=settings.reconcile_claim_ttl_seconds),
    )
    services = BillingServices(
        invoices=invoices,
        dispatcher=BatchInvoiceDispatcher(invoices, reconciler, buyers, notifier),
        settlements=SettlementCalculator(
            auctions,
            SettlementRepository(client),
            notifier=notifier,
            default_commission_percent=settings.default_commission_percent,
        ),
        webhooks=GatewayWebhookHandler(invoices, settings.stripe_webhook_secret or ""),
        notifier=notifier,
        buyers=buyers,
        gateway=gateway,
        publisher=publisher,
    )
    logger.info("Billing services ready (currency=%s)", settings.currency)
    return services


__all__ = ["BillingServices", "build_services"]
