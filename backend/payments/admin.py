from django.contrib import admin

from .models import Payment, PaymentAuditLog, PaymentRefund, Receipt


class ReceiptInline(admin.TabularInline):
    model = Receipt
    extra = 0
    fields = ("receipt_number", "type", "status", "amount", "stripe_invoice_id")
    readonly_fields = fields
    can_delete = False


class PaymentRefundInline(admin.TabularInline):
    model = PaymentRefund
    extra = 0
    fields = ("amount", "reason", "status", "stripe_refund_id", "processed_by", "created_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "reservation", "amount", "currency", "status", "created_at")
    list_filter = ("status", "kind", "currency")
    search_fields = ("id", "user__email", "stripe_payment_id", "reservation__confirmation_id")
    readonly_fields = ("stripe_payment_id", "stripe_customer_id", "transaction_date", "created_at", "updated_at")
    inlines = [ReceiptInline, PaymentRefundInline]


@admin.register(Receipt)
class ReceiptAdmin(admin.ModelAdmin):
    list_display = ("receipt_number", "payment", "type", "status", "amount", "issue_date")
    list_filter = ("type", "status")
    search_fields = ("receipt_number", "stripe_invoice_id", "user__email")


@admin.register(PaymentAuditLog)
class PaymentAuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "payment", "actor", "created_at")
    list_filter = ("action",)
    readonly_fields = ("actor", "payment", "action", "old_values", "new_values", "notes", "created_at")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
