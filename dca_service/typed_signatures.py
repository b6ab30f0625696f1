"""
Domain-separated typed-message signatures (EIP-712).

Stateless helpers: hash an Order or CancelOrder message under a signing
domain, sign it with a private key (clients, tests) and recover the signer
address from a signature (engine). Nothing here touches the order store,
so every function can be checked against fixed vectors on its own.

Message shapes:
    Order(address owner,address registry,address resource,address outputAsset,
          uint256 budget,uint256 interval,uint256 amountPerInterval,
          uint256 totalSpend,uint256 lastPrice,uint256 lastPurchaseTime,
          uint256 deadline,uint256 nonce)
    CancelOrder(uint256 orderId)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Union
import logging

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak

from dca_service.errors import InvalidOrder, InvalidSignature
from dca_service.order_models import UINT256_MAX, Order, normalize_address


logger = logging.getLogger(__name__)

SignatureLike = Union[bytes, str]

ORDER_TYPE: List[Dict[str, str]] = [
    {"name": "owner", "type": "address"},
    {"name": "registry", "type": "address"},
    {"name": "resource", "type": "address"},
    {"name": "outputAsset", "type": "address"},
    {"name": "budget", "type": "uint256"},
    {"name": "interval", "type": "uint256"},
    {"name": "amountPerInterval", "type": "uint256"},
    {"name": "totalSpend", "type": "uint256"},
    {"name": "lastPrice", "type": "uint256"},
    {"name": "lastPurchaseTime", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
]

CANCEL_ORDER_TYPE: List[Dict[str, str]] = [
    {"name": "orderId", "type": "uint256"},
]


@dataclass(frozen=True)
class SigningDomain:
    """Per-deployment domain binding signatures to one engine instance."""
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": normalize_address(self.verifying_contract),
        }


def order_message(order: Order, nonce: int) -> Dict[str, Any]:
    return {
        "owner": order.owner,
        "registry": order.registry,
        "resource": order.resource,
        "outputAsset": order.output_asset,
        "budget": order.budget,
        "interval": order.interval,
        "amountPerInterval": order.amount_per_interval,
        "totalSpend": order.total_spend,
        "lastPrice": order.last_price,
        "lastPurchaseTime": order.last_purchase_time,
        "deadline": order.deadline,
        "nonce": nonce,
    }


def encode_order(domain: SigningDomain, order: Order, nonce: int) -> SignableMessage:
    """
    Raises:
        InvalidOrder: an amount field or the nonce does not fit in uint256
    """
    oversized = order.oversized_fields()
    if not 0 <= nonce <= UINT256_MAX:
        oversized.append("nonce")
    if oversized:
        raise InvalidOrder(f"Fields out of uint256 range: {', '.join(oversized)}")
    return encode_typed_data(
        domain_data=domain.as_dict(),
        message_types={"Order": ORDER_TYPE},
        message_data=order_message(order, nonce),
    )


def encode_cancel(domain: SigningDomain, order_id: int) -> SignableMessage:
    if not 0 <= order_id <= UINT256_MAX:
        raise InvalidOrder(f"Order id {order_id} out of uint256 range")
    return encode_typed_data(
        domain_data=domain.as_dict(),
        message_types={"CancelOrder": CANCEL_ORDER_TYPE},
        message_data={"orderId": order_id},
    )


def domain_separator(domain: SigningDomain) -> bytes:
    """32-byte hash of the signing domain (the typed-data header)."""
    return bytes(encode_cancel(domain, 0).header)


def digest(signable: SignableMessage) -> bytes:
    """Final hash that is signed: keccak(0x19 || version || domain || struct)."""
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def recover_signer(signable: SignableMessage, signature: SignatureLike) -> str:
    """
    Recover the checksum address that produced `signature` over `signable`.

    Raises:
        InvalidSignature: signature is malformed or not recoverable
    """
    try:
        return normalize_address(Account.recover_message(signable, signature=signature))
    except Exception as e:
        logger.warning("Signature recovery failed: %s", e)
        raise InvalidSignature(f"Signature could not be recovered: {e}") from e


def sign_order(domain: SigningDomain, order: Order, nonce: int, private_key) -> bytes:
    signed = Account.sign_message(encode_order(domain, order, nonce), private_key)
    return bytes(signed.signature)


def sign_cancel(domain: SigningDomain, order_id: int, private_key) -> bytes:
    signed = Account.sign_message(encode_cancel(domain, order_id), private_key)
    return bytes(signed.signature)
