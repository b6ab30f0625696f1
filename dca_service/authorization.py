"""
Authorization Subsystem

Two paths to the same privileged action (submit, cancel):

DIRECT:  caller == declared owner, and the custodian registry confirms the
         owner currently controls the resource.
SIGNED:  the signer recovered from a domain-separated typed message must be
         the declared owner, and the supplied nonce must equal the signer's
         current counter. The nonce is consumed on the caller's unit of work,
         so it is rolled back with everything else if the operation fails.

Reset only accepts the direct path.
"""

from typing import Optional
import logging

from dca_service.collaborators import CustodianRegistry, ResourceNotFound
from dca_service.errors import CallerNotBorrower
from dca_service.order_models import Order, normalize_address
from dca_service.order_store import UnitOfWork
from dca_service.typed_signatures import (
    SignatureLike,
    SigningDomain,
    encode_cancel,
    encode_order,
    recover_signer,
)


logger = logging.getLogger(__name__)


class OrderAuthorizer:
    def __init__(self, domain: SigningDomain):
        self.domain = domain

    @staticmethod
    def check_controller(
        owner: str,
        resource: str,
        registry: Optional[CustodianRegistry],
        order_id: Optional[int] = None,
    ) -> None:
        """Registry must confirm `owner` currently controls `resource`."""
        if registry is None:
            raise CallerNotBorrower("Unknown custodian registry", order_id=order_id)
        try:
            controller = normalize_address(registry.controller_of(resource))
        except ResourceNotFound as e:
            raise CallerNotBorrower(f"Unknown resource {resource}", order_id=order_id) from e
        if controller != normalize_address(owner):
            raise CallerNotBorrower(
                f"{owner} does not control resource {resource}", order_id=order_id
            )

    def authorize_direct(
        self,
        caller: str,
        order: Order,
        registry: Optional[CustodianRegistry],
        order_id: Optional[int] = None,
    ) -> None:
        if normalize_address(caller) != order.owner:
            logger.warning("Direct authorization rejected: caller=%s owner=%s", caller, order.owner)
            raise CallerNotBorrower(
                f"Caller {caller} is not the order owner {order.owner}", order_id=order_id
            )
        self.check_controller(order.owner, order.resource, registry, order_id)

    def authorize_signed_order(
        self,
        order: Order,
        nonce: int,
        signature: SignatureLike,
        registry: Optional[CustodianRegistry],
        uow: UnitOfWork,
    ) -> str:
        """
        Verify a signed submission and consume the signer's nonce.

        Returns:
            The recovered signer (== order.owner)

        Raises:
            CallerNotBorrower / InvalidSignature: signer is not the owner
            IncorrectSignatureNonce: nonce is not the signer's current counter
        """
        signer = recover_signer(encode_order(self.domain, order, nonce), signature)
        if signer != order.owner:
            logger.warning("Signed submission rejected: signer=%s owner=%s", signer, order.owner)
            raise CallerNotBorrower(f"Signer {signer} is not the order owner {order.owner}")
        uow.consume_nonce(signer, nonce)
        self.check_controller(order.owner, order.resource, registry)
        return signer

    def authorize_signed_cancel(
        self,
        order_id: int,
        order: Order,
        signature: SignatureLike,
        uow: UnitOfWork,
    ) -> str:
        """Verify a signed cancellation against the stored owner and consume a nonce."""
        signer = recover_signer(encode_cancel(self.domain, order_id), signature)
        if signer != order.owner:
            logger.warning("Signed cancellation rejected: signer=%s owner=%s", signer, order.owner)
            raise CallerNotBorrower(
                f"Signer {signer} is not the order owner {order.owner}", order_id=order_id
            )
        uow.consume_nonce(signer)
        return signer
