from dataclasses import asdict
from decimal import Decimal

from rest_framework import serializers

from accounts.serializers import UserSummarySerializer
from bookings.models import Reservation

from .models import Payment, Receipt


class ReservationBriefSerializer(serializers.ModelSerializer):
    venue = serializers.SerializerMethodField()
    service = serializers.SerializerMethodField()

    class Meta:
        model = Reservation
        fields = [
            "id",
            "confirmation_id",
            "status",
            "check_in_date",
            "check_out_date",
            "guests",
            "total_amount",
            "venue",
            "service",
        ]

    def get_venue(self, obj):
        return {"id": obj.venue_id, "name": obj.venue.name, "owner_id": obj.venue.owner_id}

    def get_service(self, obj):
        return {"id": obj.service_id, "name": obj.service.name, "price": str(obj.service.price)}


class ReceiptSerializer(serializers.ModelSerializer):
    class Meta:
        model = Receipt
        fields = [
            "id",
            "receipt_number",
            "type",
            "status",
            "amount",
            "subtotal_amount",
            "tax_amount",
            "currency",
            "issue_date",
            "due_date",
            "stripe_invoice_id",
            "stripe_invoice_url",
            "stripe_invoice_pdf",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "amount",
            "currency",
            "status",
            "payment_method",
            "stripe_payment_id",
            "stripe_customer_id",
            "transaction_date",
            "description",
            "kind",
            "subscription_plan",
            "created_at",
        ]
        read_only_fields = fields


def _gateway_payload(value):
    if value is None:
        return None
    payload = asdict(value)
    for key, item in payload.items():
        if isinstance(item, Decimal):
            payload[key] = str(item)
    return payload


class AdminPaymentSerializer(PaymentSerializer):
    """Payment row as listed in the admin back office, with live gateway data when available."""

    user = UserSummarySerializer(read_only=True)
    reservation = ReservationBriefSerializer(read_only=True)
    receipts = ReceiptSerializer(many=True, read_only=True)
    platform_fee = serializers.SerializerMethodField()
    net_amount = serializers.SerializerMethodField()
    stripe_payment = serializers.SerializerMethodField()
    stripe_customer = serializers.SerializerMethodField()

    class Meta(PaymentSerializer.Meta):
        fields = PaymentSerializer.Meta.fields + [
            "metadata",
            "user",
            "reservation",
            "receipts",
            "platform_fee",
            "net_amount",
            "stripe_payment",
            "stripe_customer",
        ]
        read_only_fields = fields

    def _commission(self, obj):
        return getattr(obj, "_commission", None)

    def get_platform_fee(self, obj):
        commission = self._commission(obj)
        return str(commission.platform_fee) if commission else None

    def get_net_amount(self, obj):
        commission = self._commission(obj)
        return str(commission.net_amount) if commission else None

    def get_stripe_payment(self, obj):
        return _gateway_payload(getattr(obj, "_gateway_payment", None))

    def get_stripe_customer(self, obj):
        return _gateway_payload(getattr(obj, "_gateway_customer", None))


class PaymentListQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True)
    venue_id = serializers.IntegerField(required=False, min_value=1)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    search = serializers.CharField(required=False, allow_blank=True, max_length=200)

    def validate_status(self, value):
        value = (value or "").upper()
        allowed = {choice for choice, _ in Payment.STATUSES} | {"ALL", ""}
        if value not in allowed:
            raise serializers.ValidationError(f"Unknown payment status '{value}'.")
        return value

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError({"end_date": "End date must not be before start date."})
        return attrs


class StatsRequestSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["getStats"])
    filters = serializers.DictField(required=False)

    def validate(self, attrs):
        filters = attrs.get("filters") or {}
        dates = serializers.DateField(required=False, allow_null=True)
        try:
            start = dates.to_internal_value(filters["start_date"]) if filters.get("start_date") else None
            end = dates.to_internal_value(filters["end_date"]) if filters.get("end_date") else None
        except serializers.ValidationError as exc:
            raise serializers.ValidationError({"filters": exc.detail})
        if start and end and start > end:
            raise serializers.ValidationError({"filters": "end_date must not be before start_date."})
        attrs["start_date"] = start
        attrs["end_date"] = end
        return attrs


class InvoiceCreateSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True, max_length=500)
    due_date = serializers.DateTimeField(required=False, allow_null=True)
    auto_finalize = serializers.BooleanField(required=False, default=True)
    metadata = serializers.DictField(required=False, default=dict)


class PaymentActionSerializer(serializers.Serializer):
    REFUND = "refund"
    UPDATE_STATUS = "updateStatus"
    MANUAL_VERIFICATION = "manualVerification"

    action = serializers.ChoiceField(choices=[REFUND, UPDATE_STATUS, MANUAL_VERIFICATION])
    payment_id = serializers.IntegerField(min_value=1)
    amount = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    verification_method = serializers.CharField(required=False, allow_blank=True, max_length=60)
