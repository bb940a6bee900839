"""Pytest fixtures for checkout client and fee reconciler tests."""

import pytest

from src.integrations.clients.mocks.checkout import MockCheckoutClient
from src.integrations.policy.fee_reconciler import FeeReconciler
from src.utils.config_loader import FeeConfig, RemovalConfig

CHECKOUT_ID = "52537871-c507-4f11-a6bc-87da398d2c34"


class RecordingSleep:
    """Stands in for asyncio.sleep so verification delays cost nothing."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def checkout_id():
    return CHECKOUT_ID


@pytest.fixture
def mock_client():
    """In-memory checkout client with one empty checkout (subtotal 100)."""
    client = MockCheckoutClient()
    client.add_checkout(CHECKOUT_ID, subtotal=100.0)
    return client


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def removal_config():
    return RemovalConfig(settle_delay_seconds=1.5, verify_attempts=5, verify_backoff_seconds=2.0)


@pytest.fixture
def reconciler(mock_client, removal_config, sleep):
    return FeeReconciler(mock_client, fee=FeeConfig(), removal=removal_config, sleep=sleep)


def insurance_fee(cost=4.0, **extra):
    fee = {
        "type": "custom_fee",
        "name": "Shipping Insurance",
        "display_name": "Shipping Insurance",
        "cost": cost,
        "source": "AA",
    }
    fee.update(extra)
    return fee


def gift_wrap_fee(cost=2.5, **extra):
    fee = {
        "type": "custom_fee",
        "name": "Gift Wrap",
        "display_name": "Gift Wrap",
        "cost": cost,
        "source": "AA",
        "tax_class_id": 1,
    }
    fee.update(extra)
    return fee
