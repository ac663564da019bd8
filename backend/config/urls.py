from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from bookings.api import ReservationViewSet
from payments.api import (
    AdminPaymentsView,
    PaymentActionsView,
    PaymentInvoiceView,
    StripeWebhookView,
    VenueOptionsView,
)

router = DefaultRouter()
router.register(r"reservations", ReservationViewSet, basename="reservation")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include(router.urls)),
    path("api/admin/payments/", AdminPaymentsView.as_view(), name="admin-payments"),
    path(
        "api/admin/payments/actions/",
        PaymentActionsView.as_view(),
        name="admin-payment-actions",
    ),
    path(
        "api/admin/payments/venues/",
        VenueOptionsView.as_view(),
        name="admin-payment-venues",
    ),
    path(
        "api/admin/payments/<int:payment_id>/invoice/",
        PaymentInvoiceView.as_view(),
        name="admin-payment-invoice",
    ),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
