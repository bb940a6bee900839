from decimal import Decimal

import pytest

from src.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    extract_fees,
    normalize_checkout_response,
)

FEES = [
    {"id": "f-1", "name": "Shipping Insurance", "display_name": "Shipping Insurance", "cost": 4, "source": "AA", "type": "custom_fee"},
    {"id": 77, "name": "Gift Wrap", "cost_inc_tax": "2.50", "tax_class_id": 1},
]


def _direct():
    return {"data": {"id": "chk-1", "subtotal_ex_tax": 100, "cart": {"base_amount": 100}, "fees": FEES}}


def _nested_in_cart():
    return {"data": {"id": "chk-1", "subtotal_ex_tax": 100, "cart": {"base_amount": 100, "fees": FEES}}}


def _top_level():
    return {"data": {"id": "chk-1", "subtotal_ex_tax": 100, "cart": {"base_amount": 100}}, "fees": FEES}


@pytest.mark.parametrize("payload_factory", [_direct, _nested_in_cart, _top_level])
def test_fee_location_does_not_change_snapshot(payload_factory):
    snapshot = normalize_checkout_response(payload_factory(), checkout_id="chk-1")
    reference = normalize_checkout_response(_direct(), checkout_id="chk-1")

    assert snapshot.model_dump() == reference.model_dump()
    assert [fee.name for fee in snapshot.fees] == ["Shipping Insurance", "Gift Wrap"]


def test_fees_normalized():
    snapshot = normalize_checkout_response(_direct(), checkout_id="chk-1")
    insurance, gift = snapshot.fees

    assert insurance.cost == Decimal("4.00")
    assert gift.id == "77"
    assert gift.cost == Decimal("2.50")
    assert gift.display_name == "Gift Wrap"
    assert gift.type == "custom_fee"
    assert gift.source == "AA"
    assert gift.tax_class_id == 1


def test_direct_location_wins_over_nested():
    payload = _direct()
    payload["data"]["cart"]["fees"] = [{"id": "other", "name": "Other", "cost": 1}]

    assert [fee["id"] for fee in extract_fees(payload)] == ["f-1", 77]


@pytest.mark.parametrize(
    "payload",
    [
        {"data": {"id": "chk-1"}},
        {"data": {"id": "chk-1", "fees": None}},
        {"data": {"id": "chk-1", "fees": "not-a-list"}},
        {},
    ],
)
def test_missing_fees_normalize_to_empty_list(payload):
    snapshot = normalize_checkout_response(payload, checkout_id="chk-1")
    assert snapshot.fees == []
    assert snapshot.subtotal == Decimal("0.00")
    assert snapshot.checkout_id == "chk-1"


def test_subtotal_falls_back_to_cart_base_amount():
    payload = {"data": {"cart": {"base_amount": 19.99}}}
    snapshot = normalize_checkout_response(payload, checkout_id="chk-1")
    assert snapshot.subtotal == Decimal("19.99")


def test_matching_is_case_insensitive_on_any_label():
    payload = {"data": {"fees": [
        {"id": "a", "name": "SHIPPING INSURANCE", "cost": 1},
        {"id": "b", "name": "fee", "display_name": " shipping insurance ", "cost": 1},
        {"id": "c", "name": "fee", "title": "Shipping Insurance", "cost": 1},
        {"id": "d", "name": "Shipping Insurance Plus", "cost": 1},
    ]}}
    snapshot = normalize_checkout_response(payload, checkout_id="chk-1")

    assert [fee.id for fee in snapshot.matching_fees("Shipping Insurance")] == ["a", "b", "c"]
    assert [fee.id for fee in snapshot.other_fees("Shipping Insurance")] == ["d"]


def test_raw_payload_not_serialized():
    snapshot = normalize_checkout_response(_direct(), checkout_id="chk-1")
    assert snapshot.raw["data"]["id"] == "chk-1"
    assert "raw" not in snapshot.model_dump()


@pytest.mark.parametrize("cost", ["abc", True, "Infinity"])
def test_invalid_fee_cost_raises(cost):
    payload = {"data": {"fees": [{"id": "a", "name": "x", "cost": cost}]}}
    with pytest.raises(IntegrationResponseError):
        normalize_checkout_response(payload, checkout_id="chk-1")


def test_non_object_payload_raises():
    with pytest.raises(IntegrationResponseError):
        normalize_checkout_response(["nope"], checkout_id="chk-1")


def test_explicit_zero_cost_is_kept():
    payload = {"data": {"fees": [{"id": "a", "name": "Shipping Insurance", "cost": 0, "cost_inc_tax": 4.4}]}}

    snapshot = normalize_checkout_response(payload, checkout_id="chk-1")

    assert snapshot.fees[0].cost == Decimal("0.00")
