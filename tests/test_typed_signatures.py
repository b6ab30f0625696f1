"""
Typed signature tests

Covers:
- Domain separator and struct hashes against hand-computed vectors
- Sign/recover for Order and CancelOrder messages
- Binding to nonce, order id and signing domain (no cross-context replay)
- Malformed signatures
"""

import pytest
from eth_utils import keccak, to_bytes

from dca_service.errors import CallerNotBorrower, InvalidOrder, InvalidSignature
from dca_service.order_models import UINT256_MAX, Order
from dca_service.typed_signatures import (
    SigningDomain,
    digest,
    domain_separator,
    encode_cancel,
    encode_order,
    recover_signer,
    sign_cancel,
    sign_order,
)

from paper_world import DAY, ENGINE_ADDRESS, USDC_UNIT, WETH


DOMAIN_TYPE = b"EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
ORDER_TYPE = (
    b"Order(address owner,address registry,address resource,address outputAsset,"
    b"uint256 budget,uint256 interval,uint256 amountPerInterval,uint256 totalSpend,"
    b"uint256 lastPrice,uint256 lastPurchaseTime,uint256 deadline,uint256 nonce)"
)


def _word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _address_word(address: str) -> bytes:
    return b"\x00" * 12 + to_bytes(hexstr=address)


@pytest.fixture
def domain():
    return SigningDomain(name="DCAOrderEngine", version="1", chain_id=1, verifying_contract=ENGINE_ADDRESS)


@pytest.fixture
def order(owner_account, registry, resource):
    return Order(
        owner=owner_account.address,
        registry=registry.address,
        resource=resource,
        output_asset=WETH,
        budget=1000 * USDC_UNIT,
        interval=DAY,
        amount_per_interval=100 * USDC_UNIT,
        deadline=1_800_000_000,
    )


# ============================================================================
# FIXED VECTORS
# ============================================================================

class TestHashingVectors:
    """Hashes match a manual encoding of the typed-data rules."""

    def test_domain_separator_matches_manual_encoding(self, domain):
        expected = keccak(
            keccak(DOMAIN_TYPE)
            + keccak(text="DCAOrderEngine")
            + keccak(text="1")
            + _word(1)
            + _address_word(ENGINE_ADDRESS)
        )
        assert domain_separator(domain) == expected
        assert len(domain_separator(domain)) == 32

    def test_cancel_struct_hash_matches_manual_encoding(self, domain):
        signable = encode_cancel(domain, 42)
        expected = keccak(keccak(b"CancelOrder(uint256 orderId)") + _word(42))
        assert bytes(signable.body) == expected

    def test_order_struct_hash_matches_manual_encoding(self, domain, order):
        signable = encode_order(domain, order, 7)
        expected = keccak(
            keccak(ORDER_TYPE)
            + _address_word(order.owner)
            + _address_word(order.registry)
            + _address_word(order.resource)
            + _address_word(order.output_asset)
            + _word(order.budget)
            + _word(order.interval)
            + _word(order.amount_per_interval)
            + _word(order.total_spend)
            + _word(order.last_price)
            + _word(order.last_purchase_time)
            + _word(order.deadline)
            + _word(7)
        )
        assert bytes(signable.body) == expected

    def test_digest_prefix(self, domain):
        signable = encode_cancel(domain, 1)
        expected = keccak(b"\x19\x01" + domain_separator(domain) + bytes(signable.body))
        assert digest(signable) == expected

    def test_domain_separator_depends_on_chain_and_contract(self, domain):
        other_chain = SigningDomain(domain.name, domain.version, 10, domain.verifying_contract)
        other_contract = SigningDomain(
            domain.name, domain.version, domain.chain_id, "0x" + "ab" * 20
        )
        assert domain_separator(domain) != domain_separator(other_chain)
        assert domain_separator(domain) != domain_separator(other_contract)


# ============================================================================
# RECOVERY
# ============================================================================

class TestRecovery:
    def test_order_signature_recovers_owner(self, domain, order, owner_account):
        sig = sign_order(domain, order, 0, owner_account.key)
        assert recover_signer(encode_order(domain, order, 0), sig) == owner_account.address

    def test_cancel_signature_recovers_owner(self, domain, owner_account):
        sig = sign_cancel(domain, 3, owner_account.key)
        assert recover_signer(encode_cancel(domain, 3), sig) == owner_account.address

    def test_hex_signature_accepted(self, domain, owner_account):
        sig = sign_cancel(domain, 3, owner_account.key)
        assert recover_signer(encode_cancel(domain, 3), "0x" + sig.hex()) == owner_account.address

    def test_signature_bound_to_nonce(self, domain, order, owner_account):
        """Same signature checked against another nonce recovers someone else."""
        sig = sign_order(domain, order, 0, owner_account.key)
        assert recover_signer(encode_order(domain, order, 1), sig) != owner_account.address

    def test_signature_bound_to_order_fields(self, domain, order, owner_account):
        sig = sign_order(domain, order, 0, owner_account.key)
        tampered = Order(**{**order.to_dict(), "budget": order.budget * 10})
        assert recover_signer(encode_order(domain, tampered, 0), sig) != owner_account.address

    def test_signature_bound_to_order_id(self, domain, owner_account):
        sig = sign_cancel(domain, 1, owner_account.key)
        assert recover_signer(encode_cancel(domain, 2), sig) != owner_account.address

    def test_signature_bound_to_domain(self, domain, order, owner_account):
        other = SigningDomain(domain.name, domain.version, 5, domain.verifying_contract)
        sig = sign_order(other, order, 0, owner_account.key)
        assert recover_signer(encode_order(domain, order, 0), sig) != owner_account.address

    def test_malformed_signature_rejected(self, domain):
        with pytest.raises(InvalidSignature):
            recover_signer(encode_cancel(domain, 1), b"\x01\x02\x03")

    def test_invalid_signature_is_caller_not_borrower(self, domain):
        with pytest.raises(CallerNotBorrower):
            recover_signer(encode_cancel(domain, 1), "not-hex")


# ============================================================================
# WORD RANGE
# ============================================================================

class TestWordRange:
    def test_oversized_order_field_is_invalid_order(self, domain, order):
        big = Order(**{**order.to_dict(), "deadline": UINT256_MAX + 1})
        with pytest.raises(InvalidOrder, match="deadline"):
            encode_order(domain, big, 0)

    def test_oversized_nonce_is_invalid_order(self, domain, order):
        with pytest.raises(InvalidOrder, match="nonce"):
            encode_order(domain, order, UINT256_MAX + 1)

    def test_max_word_still_encodes(self, domain, order):
        top = Order(**{**order.to_dict(), "budget": UINT256_MAX})
        encode_order(domain, top, UINT256_MAX)

    def test_oversized_cancel_id_is_invalid_order(self, domain):
        with pytest.raises(InvalidOrder):
            encode_cancel(domain, UINT256_MAX + 1)
