from typing import Union

from eth_utils import is_address, is_hex, to_checksum_address
from pydantic import BaseModel, Field, field_validator

from dca_service.order_models import Order


class OrderSchema(BaseModel):
    """External (camelCase) representation of an order."""
    owner: str
    registry: str
    resource: str
    outputAsset: str
    budget: int = Field(0, ge=0)
    interval: int = Field(..., ge=0)
    amountPerInterval: int = Field(..., ge=0)
    totalSpend: int = Field(0, ge=0)
    lastPrice: int = Field(0, ge=0)
    lastPurchaseTime: int = Field(0, ge=0)
    deadline: int = Field(0, ge=0)

    @field_validator("owner", "registry", "resource", "outputAsset")
    @classmethod
    def checksum_address(cls, v):
        if not is_address(v):
            raise ValueError(f"Invalid address: {v}")
        return to_checksum_address(v)

    @field_validator(
        "budget",
        "interval",
        "amountPerInterval",
        "totalSpend",
        "lastPrice",
        "lastPurchaseTime",
        "deadline",
        mode="before",
    )
    @classmethod
    def coerce_int(cls, v):
        # uint256 values often arrive as decimal strings
        if isinstance(v, str):
            v = int(v, 0)
        return v

    def to_order(self) -> Order:
        return Order(
            owner=self.owner,
            registry=self.registry,
            resource=self.resource,
            output_asset=self.outputAsset,
            budget=self.budget,
            interval=self.interval,
            amount_per_interval=self.amountPerInterval,
            total_spend=self.totalSpend,
            last_price=self.lastPrice,
            last_purchase_time=self.lastPurchaseTime,
            deadline=self.deadline,
        )

    @classmethod
    def from_order(cls, order: Order) -> "OrderSchema":
        return cls(
            owner=order.owner,
            registry=order.registry,
            resource=order.resource,
            outputAsset=order.output_asset,
            budget=order.budget,
            interval=order.interval,
            amountPerInterval=order.amount_per_interval,
            totalSpend=order.total_spend,
            lastPrice=order.last_price,
            lastPurchaseTime=order.last_purchase_time,
            deadline=order.deadline,
        )


def _signature_bytes(v: Union[str, bytes]) -> bytes:
    if isinstance(v, bytes):
        return v
    if not is_hex(v):
        raise ValueError("signature must be hex encoded")
    return bytes.fromhex(v[2:] if v.startswith(("0x", "0X")) else v)


class SignedOrderRequest(BaseModel):
    order: OrderSchema
    nonce: int = Field(..., ge=0)
    signature: bytes

    @field_validator("signature", mode="before")
    @classmethod
    def decode_signature(cls, v):
        return _signature_bytes(v)


class SignedCancelRequest(BaseModel):
    orderId: int = Field(..., ge=0)
    signature: bytes

    @field_validator("signature", mode="before")
    @classmethod
    def decode_signature(cls, v):
        return _signature_bytes(v)


__all__ = ["OrderSchema", "SignedOrderRequest", "SignedCancelRequest"]
