import logging

from django.contrib.auth import get_user_model

logger = logging.getLogger(__name__)

User = get_user_model()


def ensure_gateway_customer(user, gateway) -> str:
    """
    Return the payer's gateway customer id, creating and persisting it once.

    The gateway call is keyed per user and the mapping is stored with a
    conditional update, so concurrent first bookings converge on one customer.
    """

    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = gateway.create_customer(
        email=user.email,
        name=user.full_name or user.email,
        metadata={"user_id": str(user.pk)},
        idempotency_key=f"customer-{user.pk}",
    )
    updated = User.objects.filter(pk=user.pk, stripe_customer_id="").update(stripe_customer_id=customer.id)
    if updated:
        user.stripe_customer_id = customer.id
        logger.info("Created gateway customer %s for user %s", customer.id, user.pk)
        return customer.id

    user.refresh_from_db(fields=["stripe_customer_id"])
    if user.stripe_customer_id != customer.id:
        logger.warning(
            "User %s already mapped to gateway customer %s; discarding %s",
            user.pk,
            user.stripe_customer_id,
            customer.id,
        )
    return user.stripe_customer_id
