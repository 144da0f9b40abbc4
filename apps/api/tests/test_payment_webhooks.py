import dataclasses
import json

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from models.credit_package import CreditPackage
from models.credit_transaction import CreditTransaction
from services.credits import CreditLedger
from services.errors import (
    InvalidSignature,
    InvalidWebhookPayload,
    MissingUserLink,
    UndeterminedCreditAmount,
)
from services.payment_webhooks import PaymentWebhookReconciler, sign_payload, verify_signature


def _order_event(order_id="order-123", **data):
    body = {
        "id": order_id,
        "product_id": "prod-3",
        "amount": 300,
        "currency": "usd",
        "customer_email": "buyer@logoloco.test",
        "metadata": {"userId": "buyer"},
    }
    body.update(data)
    return json.dumps({"type": "order.created", "data": body}).encode("utf-8")


def _signed(raw_body, secret="whsec_test", timestamp="1760000000"):
    return f"v1,{timestamp},{sign_payload(raw_body, timestamp, secret)}"


async def _add_package(db, credits=3, product_id="prod-3"):
    db.add(CreditPackage(name="Trio", credits=credits, price_in_cents=300, external_product_id=product_id))
    await db.commit()


async def _transaction_count(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(func.count(CreditTransaction.id)))
        return int(result.scalar())


def test_signature_round_trip_and_tampering():
    raw = b'{"type":"order.created"}'
    header = _signed(raw)

    assert verify_signature(raw, header, "whsec_test") is True
    assert verify_signature(raw + b" ", header, "whsec_test") is False
    assert verify_signature(raw, header, "other-secret") is False
    assert verify_signature(raw, "v1,1760000000", "whsec_test") is False
    assert verify_signature(raw, None, "whsec_test") is False


@pytest.mark.asyncio
async def test_order_grants_package_credits_once(db, core_config):
    await _add_package(db)
    ledger = CreditLedger(db, core_config)
    await ledger.initialize_user("buyer")
    reconciler = PaymentWebhookReconciler(db, core_config)
    raw = _order_event()

    first = await reconciler.handle(raw, _signed(raw))
    replay = await reconciler.handle(raw, _signed(raw))

    assert first.status == "processed"
    assert first.to_payload() == {
        "received": True,
        "status": "processed",
        "type": "order.created",
        "credits": 3,
        "new_balance": 5,
    }
    assert replay.status == "already_processed"
    summary = await ledger.get_summary("buyer")
    assert summary["balance"] == 5
    assert summary["total_purchased"] == 3

    entry = await ledger.find_by_external_order("order-123")
    assert entry.type == "purchase"
    assert entry.external_product_id == "prod-3"
    assert entry.performed_by_kind == "webhook"
    assert entry.performed_by_id == "polar"
    assert entry.metadata_json == {"customer_email": "buyer@logoloco.test", "amount": 300, "currency": "usd"}


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_without_side_effects(db, session_maker, core_config):
    await _add_package(db)
    raw = _order_event()

    with pytest.raises(InvalidSignature) as exc_info:
        await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw, secret="wrong"))

    assert exc_info.value.status_code == 401
    assert await _transaction_count(session_maker) == 0


@pytest.mark.asyncio
async def test_missing_user_reports_pending_link(db, session_maker, core_config):
    await _add_package(db)
    raw = _order_event(metadata={})

    with pytest.raises(MissingUserLink) as exc_info:
        await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw))

    payload = exc_info.value.to_payload()
    assert payload["status"] == "pending_user_link"
    assert payload["order_id"] == "order-123"
    assert payload["customer_email"] == "buyer@logoloco.test"
    assert payload["credits"] == 3
    assert await _transaction_count(session_maker) == 0


@pytest.mark.asyncio
async def test_unknown_product_falls_back_to_amount(db, core_config):
    raw = _order_event(order_id="order-amt", product_id="prod-unknown", amount=1250)

    outcome = await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw))

    assert outcome.credits == 12
    assert outcome.new_balance == 14


@pytest.mark.asyncio
async def test_undetermined_amount_is_rejected(db, session_maker, core_config):
    raw = _order_event(order_id="order-zero", product_id=None, amount=50)

    with pytest.raises(UndeterminedCreditAmount):
        await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw))

    assert await _transaction_count(session_maker) == 0


@pytest.mark.asyncio
async def test_nested_product_and_user_fields_are_resolved(db, core_config):
    await _add_package(db, credits=7, product_id="prod-nested")
    raw = json.dumps(
        {
            "type": "checkout.updated",
            "data": {
                "id": "checkout-9",
                "status": "succeeded",
                "product": {"id": "prod-nested"},
                "customer": {"email": "nested@logoloco.test"},
                "user_id": "nested-user",
            },
        }
    ).encode("utf-8")

    outcome = await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw))

    assert outcome.status == "processed"
    assert outcome.credits == 7
    assert await CreditLedger(db, core_config).get_balance("nested-user") == 9


@pytest.mark.asyncio
async def test_other_events_are_acknowledged_and_ignored(db, session_maker, core_config):
    pending_checkout = json.dumps({"type": "checkout.updated", "data": {"id": "c-1", "status": "open"}}).encode()
    refund = json.dumps({"type": "order.refunded", "data": {"id": "order-123"}}).encode()

    for raw in (pending_checkout, refund):
        outcome = await PaymentWebhookReconciler(db, core_config).handle(raw, _signed(raw))
        assert outcome.status == "ignored"
        assert outcome.to_payload()["received"] is True

    assert await _transaction_count(session_maker) == 0


@pytest.mark.asyncio
async def test_malformed_payloads(db, core_config):
    reconciler = PaymentWebhookReconciler(db, core_config)
    not_json = b"{nope"
    no_order = json.dumps({"type": "order.created", "data": {"amount": 500}}).encode()
    list_data = b'{"type":"checkout.updated","data":[1,2]}'

    with pytest.raises(InvalidWebhookPayload):
        await reconciler.handle(not_json, _signed(not_json))
    with pytest.raises(InvalidWebhookPayload):
        await reconciler.handle(no_order, _signed(no_order))
    with pytest.raises(InvalidWebhookPayload):
        await reconciler.handle(list_data, _signed(list_data))


@pytest.mark.asyncio
async def test_unset_secret_skips_verification(db, core_config):
    config = dataclasses.replace(core_config, webhook_secret="")
    raw = _order_event(order_id="order-open", product_id=None, amount=200)

    outcome = await PaymentWebhookReconciler(db, config).handle(raw, None)

    assert outcome.status == "processed"
    assert outcome.credits == 2
