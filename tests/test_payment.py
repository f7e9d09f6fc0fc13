import json
from decimal import Decimal

import pytest

from hidasushi.core.config import EnvironmentMode, Settings
from hidasushi.services.payment import MockPaymentService, StripePaymentService
from hidasushi.services.payment.base import from_cents, to_cents


def instant(failure_rate=0.0):
    return MockPaymentService(failure_rate=failure_rate, min_latency=0, max_latency=0)


def test_cent_conversion():
    assert to_cents(Decimal("30.21")) == 3021
    assert to_cents(Decimal("0.10")) == 10
    assert from_cents(3021) == Decimal("30.21")


async def test_mock_payment_succeeds():
    result = await instant().process_payment(Decimal("30.21"), payment_token="pm_card_visa")
    assert result.success
    assert result.payment_intent_id.startswith("pi_mock_")
    assert result.amount == Decimal("30.21")
    assert result.currency == "eur"


async def test_mock_payment_declines():
    result = await instant(failure_rate=1.0).process_payment(Decimal("30.21"))
    assert not result.success
    assert result.error_code in {code for code, _ in MockPaymentService.DECLINE_REASONS}


async def test_mock_rejects_non_positive_amount():
    result = await instant().process_payment(Decimal("0"))
    assert result.error_code == "invalid_amount"


async def test_mock_intent_has_client_secret():
    result = await instant().create_payment_intent(Decimal("12.00"), metadata={"order_id": 1})
    assert result.client_secret == f"{result.payment_intent_id}_secret_mock"
    assert result.metadata == {"order_id": 1}


async def test_mock_webhook_parses_json():
    service = instant()
    assert await service.verify_webhook(json.dumps({"type": "x"}).encode(), None) == {"type": "x"}
    assert await service.verify_webhook(b"{", None) is None


def test_stripe_requires_secret_key():
    with pytest.raises(ValueError, match="STRIPE_SECRET_KEY"):
        StripePaymentService(Settings(env_mode=EnvironmentMode.STAGING, stripe_secret_key=None))


async def test_stripe_webhook_without_signature_is_rejected():
    service = StripePaymentService(Settings(stripe_secret_key="sk_test_123", stripe_webhook_secret="whsec_123"))
    assert await service.verify_webhook(b"{}", None) is None
    assert await service.verify_webhook(b"{}", "t=1,v1=deadbeef") is None


def test_production_config_lists_missing_secrets():
    settings = Settings(env_mode="production", stripe_secret_key=None, stripe_webhook_secret=None)
    assert settings.validate_production_config() == ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]
    assert Settings(env_mode="development").validate_production_config() == []
