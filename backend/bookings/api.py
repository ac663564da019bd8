from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Reservation
from bookings.serializers import (
    ReservationBookingResponseSerializer,
    ReservationCancellationResponseSerializer,
    ReservationCancelSerializer,
    ReservationCreateSerializer,
    ReservationSerializer,
)
from bookings.services.booking import BookingRequest, create_booking
from bookings.services.cancellation import cancel_reservation
from bookings.services.notifications import dispatch_events
from core.pagination import PageLimitPagination
from payments.scoping import Requester, reservation_scope_filter


class ReservationViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = ReservationSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = PageLimitPagination
    filterset_fields = ["status", "venue", "service"]
    ordering_fields = ["created_at", "check_in_date"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        requester = Requester.from_user(self.request.user)
        return (
            Reservation.objects.select_related("user", "venue", "service")
            .prefetch_related("payments")
            .filter(reservation_scope_filter(requester))
        )

    def create(self, request, *args, **kwargs):
        serializer = ReservationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = create_booking(
            BookingRequest(
                user_id=request.user.pk,
                venue_id=data["venue_id"],
                service_id=data["service_id"],
                check_in_date=data["check_in_date"],
                check_out_date=data["check_out_date"],
                guests=data["guests"],
                payment_method_id=data["payment_method_id"],
                notes=data.get("notes", ""),
                idempotency_key=request.headers.get("Idempotency-Key") or None,
            )
        )
        dispatch_events(result.events)

        response_serializer = ReservationBookingResponseSerializer(result)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = ReservationCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = cancel_reservation(
            Requester.from_user(request.user),
            int(pk),
            serializer.validated_data.get("reason", ""),
        )
        dispatch_events(result.events)

        return Response(ReservationCancellationResponseSerializer(result).data)
