"""Audit trail immutability and payout gateway selection tests."""

import pytest

from app.config import settings
from app.core.immutability import ImmutabilityViolationError
from app.gateways.manual import ManualGateway
from app.gateways.stripe_gateway import StripeGateway
from app.services.audit_service import audit_service
from app.services.gateway_service import get_payout_gateway


@pytest.fixture
def fresh_gateway_cache():
    get_payout_gateway.cache_clear()
    yield
    get_payout_gateway.cache_clear()


@pytest.mark.asyncio
async def test_audit_rows_cannot_be_updated(db, make_mentor):
    mentor = await make_mentor()
    entry = await audit_service.log_action(
        db,
        action="mentor_trusted",
        mentor_id=mentor.id,
        new_values={"is_trusted": True},
    )
    await db.commit()

    entry.actor = "admin"
    with pytest.raises(ImmutabilityViolationError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_audit_rows_cannot_be_deleted(db, make_mentor):
    mentor = await make_mentor()
    entry = await audit_service.log_action(db, action="mentor_deactivated", mentor_id=mentor.id)
    await db.commit()

    await db.delete(entry)
    with pytest.raises(ImmutabilityViolationError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_unknown_audit_action_rejected(db):
    with pytest.raises(ValueError):
        await audit_service.log_action(db, action="payout_teleport")


def test_manual_gateway_outside_production(monkeypatch, fresh_gateway_cache):
    monkeypatch.setattr(settings, "environment", "staging")
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_live_abc")

    assert isinstance(get_payout_gateway(), ManualGateway)


def test_stripe_gateway_in_production(monkeypatch, fresh_gateway_cache):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_live_abc")

    gateway = get_payout_gateway()

    assert isinstance(gateway, StripeGateway)
    assert gateway.secret_key == "sk_live_abc"


def test_production_without_stripe_key_refuses(monkeypatch, fresh_gateway_cache):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "stripe_secret_key", None)

    with pytest.raises(RuntimeError):
        get_payout_gateway()
