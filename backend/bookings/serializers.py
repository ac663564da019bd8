from rest_framework import serializers

from accounts.serializers import UserSummarySerializer
from bookings.models import Reservation
from payments.serializers import PaymentSerializer


class ReservationSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    venue_name = serializers.CharField(source="venue.name", read_only=True)
    service_name = serializers.CharField(source="service.name", read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Reservation
        fields = [
            "id",
            "confirmation_id",
            "status",
            "venue",
            "venue_name",
            "service",
            "service_name",
            "check_in_date",
            "check_out_date",
            "guests",
            "total_amount",
            "notes",
            "cancel_reason",
            "cancelled_at",
            "user",
            "payments",
            "created_at",
        ]
        read_only_fields = fields


class ReservationCreateSerializer(serializers.Serializer):
    venue_id = serializers.IntegerField(min_value=1)
    service_id = serializers.IntegerField(min_value=1)
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    guests = serializers.IntegerField(min_value=1, default=1)
    payment_method_id = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class ReservationBookingResponseSerializer(serializers.Serializer):
    reservation = serializers.SerializerMethodField()
    payment = serializers.SerializerMethodField()
    gateway_payment_intent = serializers.SerializerMethodField()

    def get_reservation(self, obj):
        return ReservationSerializer(obj.reservation).data

    def get_payment(self, obj):
        return PaymentSerializer(obj.payment).data

    def get_gateway_payment_intent(self, obj):
        intent = obj.payment_intent
        return {"id": intent.id, "status": intent.status}


class ReservationCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class ReservationCancellationResponseSerializer(serializers.Serializer):
    reservation = serializers.SerializerMethodField()
    refund_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    refund = serializers.SerializerMethodField()

    def get_reservation(self, obj):
        return ReservationSerializer(obj.reservation).data

    def get_refund(self, obj):
        refund = obj.refund
        if refund is None:
            return None
        return {
            "id": refund.pk,
            "amount": str(refund.amount),
            "status": refund.status,
            "stripe_refund_id": refund.stripe_refund_id,
        }
