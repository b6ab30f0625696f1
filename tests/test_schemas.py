import pytest
from pydantic import ValidationError

from dca_service.schemas import OrderSchema, SignedCancelRequest, SignedOrderRequest
from dca_service.typed_signatures import sign_order

from paper_world import DAY, USDC_UNIT, WETH


@pytest.fixture
def payload(owner_account, registry, resource):
    return {
        "owner": owner_account.address.lower(),
        "registry": registry.address,
        "resource": resource,
        "outputAsset": WETH,
        "budget": str(1000 * USDC_UNIT),
        "interval": DAY,
        "amountPerInterval": hex(100 * USDC_UNIT),
    }


def test_order_schema_normalizes_and_converts(payload, owner_account):
    schema = OrderSchema(**payload)
    assert schema.owner == owner_account.address
    assert schema.budget == 1000 * USDC_UNIT
    assert schema.amountPerInterval == 100 * USDC_UNIT

    order = schema.to_order()
    assert order.output_asset == WETH
    assert order.total_spend == 0
    assert OrderSchema.from_order(order) == schema


def test_invalid_address_rejected(payload):
    payload["resource"] = "0xdeadbeef"
    with pytest.raises(ValidationError):
        OrderSchema(**payload)


def test_negative_amount_rejected(payload):
    payload["budget"] = -1
    with pytest.raises(ValidationError):
        OrderSchema(**payload)


def test_missing_interval_rejected(payload):
    del payload["interval"]
    with pytest.raises(ValidationError):
        OrderSchema(**payload)


def test_signed_order_request_relayed(payload, engine, owner_account):
    order = OrderSchema(**payload).to_order()
    sig = sign_order(engine.domain, order, 0, owner_account.key)
    request = SignedOrderRequest(order=payload, nonce=0, signature="0x" + sig.hex())
    assert request.signature == sig

    oid = engine.submit_order_with_signature(
        request.order.to_order(), request.nonce, request.signature
    )
    assert engine.get_order(oid).owner == owner_account.address


def test_signed_cancel_request_accepts_bare_hex():
    request = SignedCancelRequest(orderId=3, signature="ab" * 65)
    assert request.signature == b"\xab" * 65


def test_signature_must_be_hex():
    with pytest.raises(ValidationError):
        SignedCancelRequest(orderId=3, signature="zz")
