"""Service wiring for eventpay.

Builds the ledger client and the three services from ``Settings``. The
HTTP layer (or a worker) calls :func:`create_services` once at startup and
:meth:`Services.close` at shutdown.
"""

from dataclasses import dataclass
from typing import Optional

from supabase import Client, create_client

from eventpay.audit import AuditSink, LoggingAuditSink
from eventpay.challenge.linking import InMemoryWalletOwnerStore, WalletLinkService, WalletOwnerStore
from eventpay.challenge.service import ChallengeService
from eventpay.challenge.store import InMemoryNonceStore, NonceStore
from eventpay.config import EventPayConfig, Settings, get_settings
from eventpay.escrow.service import EscrowManager
from eventpay.ledger.client import LedgerClient
from eventpay.logging_config import get_logger, setup_logging
from eventpay.settlement.service import SettlementService
from eventpay.settlement.storage import (
    EventLookup,
    InMemoryEventLookup,
    InMemoryPaymentStorage,
    PaymentStorage,
    SupabaseEventLookup,
    SupabasePaymentStorage,
)

logger = get_logger("eventpay.bootstrap")


@dataclass
class Services:
    """Everything a request handler needs."""

    config: EventPayConfig
    ledger: LedgerClient
    escrow: EscrowManager
    challenges: ChallengeService
    wallet_links: WalletLinkService
    settlement: SettlementService

    def close(self) -> None:
        logger.info("Shutting down eventpay services")
        self.ledger.close()


def get_supabase_client(settings: Settings) -> Optional[Client]:
    """Supabase client from settings, or None when Supabase is not configured."""
    if not settings.supabase_url:
        return None
    if not settings.supabase_secret_key:
        raise ValueError("EVENTPAY_SUPABASE_SECRET_KEY must be set with EVENTPAY_SUPABASE_URL")
    return create_client(settings.supabase_url, settings.supabase_secret_key)


def create_services(
    settings: Optional[Settings] = None,
    db: Optional[Client] = None,
    nonce_store: Optional[NonceStore] = None,
    wallet_owners: Optional[WalletOwnerStore] = None,
    events: Optional[EventLookup] = None,
    payments: Optional[PaymentStorage] = None,
    audit: Optional[AuditSink] = None,
    ledger: Optional[LedgerClient] = None,
) -> Services:
    """Build the service graph.

    Explicit collaborators win; otherwise Supabase-backed storage is used
    when configured and in-memory storage when not.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    config = settings.to_config()
    if db is None:
        db = get_supabase_client(settings)

    if db is not None:
        events = events or SupabaseEventLookup(db)
        payments = payments or SupabasePaymentStorage(db)
    else:
        logger.warning("Supabase not configured; using in-memory payment storage")
        events = events or InMemoryEventLookup()
        payments = payments or InMemoryPaymentStorage()

    ledger = ledger or LedgerClient(config)
    challenges = ChallengeService(nonce_store or InMemoryNonceStore(), config)

    services = Services(
        config=config,
        ledger=ledger,
        escrow=EscrowManager(ledger, config),
        challenges=challenges,
        wallet_links=WalletLinkService(
            challenges, wallet_owners or InMemoryWalletOwnerStore(), ledger
        ),
        settlement=SettlementService(
            ledger, events, payments, config, audit=audit or LoggingAuditSink()
        ),
    )
    logger.info(f"eventpay services ready (horizon={config.horizon_url})")
    return services
