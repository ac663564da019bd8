"""
Invoice workflow for payments.

A payment receives at most one INVOICE receipt. The duplicate check runs
before any gateway call; the partial unique constraint on ``Receipt`` catches
concurrent requests that both pass the check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConflictError, GatewayError, NotFoundError
from payments.commission import invoice_tax_rate, split_tax
from payments.customers import ensure_gateway_customer
from payments.gateway import GatewayInvoice, get_gateway
from payments.models import Payment, Receipt, ReservationBacking, SubscriptionBacking
from payments.scoping import Requester, ensure_payment_in_scope

logger = logging.getLogger(__name__)


@dataclass
class InvoiceRequest:
    payment_id: int
    description: str = ""
    due_date: Optional[datetime] = None
    auto_finalize: bool = True
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class InvoiceResult:
    receipt: Receipt
    payment: Payment
    gateway_invoice: Optional[GatewayInvoice]
    sent: bool = False


def _load_payment(payment_id: int) -> Payment:
    payment = (
        Payment.objects.select_related("user", "reservation__venue", "reservation__service")
        .prefetch_related("receipts")
        .filter(pk=payment_id)
        .first()
    )
    if payment is None:
        raise NotFoundError.for_entity("Payment")
    return payment


def _existing_invoice(payment: Payment) -> Optional[Receipt]:
    for receipt in payment.receipts.all():
        if receipt.type == Receipt.TYPE_INVOICE:
            return receipt
    return None


def _duplicate_conflict(receipt: Receipt) -> ConflictError:
    return ConflictError(
        "An invoice already exists for this payment.",
        code="invoice_exists",
        extra={
            "existing": {
                "id": receipt.pk,
                "receipt_number": receipt.receipt_number,
                "status": receipt.status,
            }
        },
    )


def invoice_description(payment: Payment) -> str:
    backing = payment.backing
    if isinstance(backing, ReservationBacking):
        reservation = backing.reservation
        return f"Invoice for reservation at {reservation.venue.name} - {reservation.service.name}"
    if isinstance(backing, SubscriptionBacking):
        return f"Invoice for {backing.plan.title()} subscription"
    return payment.description or "Invoice for services"


def create_invoice(requester: Requester, request: InvoiceRequest, *, gateway=None) -> InvoiceResult:
    payment = _load_payment(request.payment_id)
    ensure_payment_in_scope(requester, payment)

    existing = _existing_invoice(payment)
    if existing is not None:
        raise _duplicate_conflict(existing)

    gateway = gateway or get_gateway()
    customer_id = ensure_gateway_customer(payment.user, gateway)
    description = (request.description or "").strip() or invoice_description(payment)
    extra_metadata = {str(key): str(value) for key, value in (request.metadata or {}).items()}

    invoice = gateway.create_invoice(
        customer_id=customer_id,
        description=description,
        metadata={
            "payment_id": str(payment.pk),
            "user_id": str(payment.user_id),
            "issued_by": str(requester.user_id),
            **extra_metadata,
        },
        idempotency_key=f"invoice-{payment.pk}",
        auto_advance=request.auto_finalize,
        due_date=request.due_date,
        days_until_due=None if request.due_date else settings.INVOICE_DAYS_UNTIL_DUE,
    )
    gateway.create_invoice_item(
        customer_id=customer_id,
        invoice_id=invoice.id,
        amount=payment.amount,
        currency=payment.currency,
        description=description,
        idempotency_key=f"invoice-item-{payment.pk}",
    )
    if request.auto_finalize:
        invoice = gateway.finalize_invoice(invoice.id)

    split = split_tax(payment.amount, invoice_tax_rate())
    due_date = request.due_date
    if due_date is None:
        due_date = invoice.due_date or timezone.now() + timedelta(days=settings.INVOICE_DAYS_UNTIL_DUE)

    try:
        with transaction.atomic():
            receipt = Receipt.objects.create(
                payment=payment,
                user=payment.user,
                type=Receipt.TYPE_INVOICE,
                status=Receipt.PENDING,
                amount=split.gross,
                subtotal_amount=split.subtotal,
                tax_amount=split.tax,
                currency=payment.currency,
                due_date=due_date,
                stripe_invoice_id=invoice.id,
                stripe_invoice_url=invoice.hosted_invoice_url,
                stripe_invoice_pdf=invoice.invoice_pdf,
                metadata={
                    "description": description,
                    "auto_finalized": request.auto_finalize,
                    "generated_by": requester.user_id,
                    **extra_metadata,
                },
            )
    except IntegrityError:
        logger.warning(
            "Concurrent invoice for payment %s; gateway invoice %s left unattached",
            payment.pk,
            invoice.id,
        )
        existing = Receipt.objects.filter(payment=payment, type=Receipt.TYPE_INVOICE).first()
        if existing is None:
            raise
        raise _duplicate_conflict(existing)

    sent = False
    if request.auto_finalize:
        try:
            invoice = gateway.send_invoice(invoice.id)
            sent = True
        except GatewayError as exc:
            logger.warning("Invoice %s created but could not be sent: %s", invoice.id, exc.code)

    logger.info("Invoice %s (%s) issued for payment %s", receipt.receipt_number, invoice.id, payment.pk)
    return InvoiceResult(receipt=receipt, payment=payment, gateway_invoice=invoice, sent=sent)


def get_invoice(requester: Requester, payment_id: int, *, gateway=None) -> InvoiceResult:
    payment = _load_payment(payment_id)
    ensure_payment_in_scope(requester, payment)

    receipt = _existing_invoice(payment)
    if receipt is None:
        raise NotFoundError("No invoice exists for this payment.", code="invoice_not_found")

    live_invoice = None
    if receipt.stripe_invoice_id:
        try:
            live_invoice = (gateway or get_gateway()).retrieve_invoice(receipt.stripe_invoice_id)
        except GatewayError as exc:
            logger.warning("Could not refresh invoice %s: %s", receipt.stripe_invoice_id, exc.code)
    return InvoiceResult(receipt=receipt, payment=payment, gateway_invoice=live_invoice)
