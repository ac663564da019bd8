import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdminRole, IsSuperAdmin
from core.exceptions import ValidationError
from core.pagination import PageRequest

from .scoping import Requester
from .serializers import (
    AdminPaymentSerializer,
    InvoiceCreateSerializer,
    PaymentActionSerializer,
    PaymentListQuerySerializer,
    PaymentSerializer,
    ReceiptSerializer,
    StatsRequestSerializer,
)
from .services.invoices import InvoiceRequest, create_invoice, get_invoice
from .services.queries import PaymentFilters, list_payments, venue_filter_options
from .services.refunds import correct_payment_status, refund_payment, verify_payment
from .services.stats import payment_stats
from .services.webhooks import handle_stripe_event

logger = logging.getLogger(__name__)


def _invoice_payload(result):
    invoice = result.gateway_invoice
    return {
        "payment": {
            "id": result.payment.pk,
            "amount": str(result.payment.amount),
            "description": result.payment.description,
        },
        "receipt": ReceiptSerializer(result.receipt).data,
        "stripe": None
        if invoice is None
        else {
            "invoice_id": invoice.id,
            "status": invoice.status,
            "number": invoice.number,
            "hosted_url": invoice.hosted_invoice_url,
            "pdf_url": invoice.invoice_pdf,
        },
    }


class AdminBaseView(APIView):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get_requester(self) -> Requester:
        return Requester.from_user(self.request.user)


class AdminPaymentsView(AdminBaseView):
    """List payments (GET) or compute statistics (POST ``{"action": "getStats"}``)."""

    def get(self, request, *args, **kwargs):
        page_request = PageRequest.from_query_params(request.query_params)
        query = PaymentListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = list_payments(
            self.get_requester(),
            page_request,
            PaymentFilters(**query.validated_data),
        )
        return Response(
            {
                "data": AdminPaymentSerializer(page.items, many=True).data,
                "pagination": page.pagination(),
            }
        )

    def post(self, request, *args, **kwargs):
        if request.data.get("action") != "getStats":
            raise ValidationError("Unsupported action.", code="invalid_action")
        serializer = StatsRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stats = payment_stats(
            self.get_requester(),
            start_date=serializer.validated_data["start_date"],
            end_date=serializer.validated_data["end_date"],
        )
        return Response({"data": stats.as_dict()})


class PaymentInvoiceView(AdminBaseView):
    def get(self, request, payment_id: int, *args, **kwargs):
        result = get_invoice(self.get_requester(), payment_id)
        return Response({"data": _invoice_payload(result)})

    def post(self, request, payment_id: int, *args, **kwargs):
        serializer = InvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = create_invoice(
            self.get_requester(),
            InvoiceRequest(payment_id=payment_id, **serializer.validated_data),
        )
        message = "Invoice generated and sent." if result.sent else "Invoice created."
        if not serializer.validated_data["auto_finalize"]:
            message = "Invoice draft created."
        return Response({"data": _invoice_payload(result), "message": message}, status=status.HTTP_201_CREATED)


class PaymentActionsView(AdminBaseView):
    def post(self, request, *args, **kwargs):
        serializer = PaymentActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        requester = self.get_requester()

        if data["action"] == PaymentActionSerializer.REFUND:
            outcome = refund_payment(
                requester,
                data["payment_id"],
                data.get("amount"),
                data.get("reason", ""),
            )
            return Response(
                {
                    "data": {
                        "payment": PaymentSerializer(outcome.payment).data,
                        "refund": {
                            "id": outcome.refund.pk,
                            "amount": str(outcome.refund.amount),
                            "status": outcome.refund.status,
                            "stripe_refund_id": outcome.refund.stripe_refund_id,
                        },
                        "refunded_total": str(outcome.refunded_total),
                    },
                    "message": "Refund processed.",
                }
            )

        if data["action"] == PaymentActionSerializer.MANUAL_VERIFICATION:
            payment = verify_payment(requester, data["payment_id"], data.get("notes", ""))
            return Response({"data": {"payment": PaymentSerializer(payment).data}, "message": "Payment verified."})

        payment = correct_payment_status(
            requester,
            data["payment_id"],
            data.get("status", ""),
            data.get("notes", ""),
            data.get("verification_method", ""),
        )
        return Response({"data": {"payment": PaymentSerializer(payment).data}, "message": "Payment status updated."})


class VenueOptionsView(AdminBaseView):
    """Venues a super admin can filter the payment list by."""

    permission_classes = [IsAuthenticated, IsSuperAdmin]

    def get(self, request, *args, **kwargs):
        return Response({"data": venue_filter_options(self.get_requester())})


class StripeWebhookView(APIView):
    """Receive Stripe webhook events for payment intents and invoices."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            logger.warning("Invalid payload received on Stripe webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.warning("Invalid Stripe signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        handle_stripe_event(event)
        return Response({"received": True})
