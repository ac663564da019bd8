from payments.models import Payment, PaymentAuditLog


def payment_snapshot(payment: Payment) -> dict:
    return {
        "status": payment.status,
        "amount": str(payment.amount),
        "transaction_date": payment.transaction_date.isoformat() if payment.transaction_date else None,
        "reservation_status": payment.reservation.status if payment.reservation_id else None,
    }


def record_payment_action(*, actor_id: int, payment: Payment, action: str, old_values: dict, notes: str = "", **extra) -> PaymentAuditLog:
    """Append one audit row; call inside the transaction that changed the payment."""
    new_values = payment_snapshot(payment)
    new_values.update(extra)
    return PaymentAuditLog.objects.create(
        actor_id=actor_id,
        payment=payment,
        action=action,
        old_values=old_values,
        new_values=new_values,
        notes=notes,
    )
