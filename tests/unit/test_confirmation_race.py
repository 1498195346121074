"""Concurrent confirmation tests: webhook and poll racing on the same transaction"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from storefront_payments.config import resolve_runtime_config
from storefront_payments.domain.models import ConfirmationSource, IntentStatus
from storefront_payments.domain.reconciliation import ReconciliationEngine
from storefront_payments.infrastructure.clients.gateway import GatewayClient
from storefront_payments.infrastructure.database.models import DeliveryCredential, Notification, Purchase
from storefront_payments.infrastructure.database.repositories import PaymentIntentRepository

WORKERS = 8


def race_confirm(session_factory, tx: str, workers: int = WORKERS) -> list:
    """Fire `workers` confirmations at once, each in its own session"""
    barrier = threading.Barrier(workers)

    def worker(i: int) -> bool:
        session = session_factory()
        try:
            engine = ReconciliationEngine(
                session,
                AsyncMock(spec=GatewayClient),
                lambda: resolve_runtime_config(lambda key: None),
            )
            source = ConfirmationSource.WEBHOOK if i % 2 else ConfirmationSource.POLL
            barrier.wait()
            return engine.confirm(tx, source).credited
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(worker, range(workers)))


def test_concurrent_topup_confirmations_credit_once(db, session_factory, buyer, admin):
    PaymentIntentRepository(db).create(buyer.id, 500, "tx-race")
    db.commit()

    results = race_confirm(session_factory, "tx-race")

    assert results.count(True) == 1
    db.expire_all()
    db.refresh(buyer)
    assert buyer.balance == 500
    assert PaymentIntentRepository(db).get_by_transaction_id("tx-race").status == IntentStatus.CONFIRMED.value
    assert db.query(Notification).count() == 1


def test_concurrent_purchase_confirmations_fulfil_once(db, session_factory, buyer, product):
    PaymentIntentRepository(db).create(buyer.id, 300, "tx-race-product", product_id=product.id)
    db.commit()

    results = race_confirm(session_factory, "tx-race-product")

    assert results.count(True) == 1
    db.expire_all()
    assert db.query(Purchase).count() == 1
    assert db.query(DeliveryCredential).count() == 1
    db.refresh(buyer)
    assert buyer.balance == 0


@pytest.mark.parametrize("workers", [2, 5])
def test_webhook_and_poll_same_instant(db, session_factory, buyer, workers):
    PaymentIntentRepository(db).create(buyer.id, 700, "tx-pair")
    db.commit()

    results = race_confirm(session_factory, "tx-pair", workers=workers)

    assert sum(results) == 1
    db.expire_all()
    db.refresh(buyer)
    assert buyer.balance == 700
