from django.db import migrations, models

import venues.models


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("venues", "0002_service_currency_default"),
    ]

    operations = [
        migrations.AddConstraint(
            model_name="payment",
            constraint=models.UniqueConstraint(
                condition=models.Q(("stripe_payment_id__isnull", False), models.Q(("stripe_payment_id", ""), _negated=True)),
                fields=("stripe_payment_id",),
                name="unique_gateway_payment_reference",
            ),
        ),
        migrations.AlterField(
            model_name="payment",
            name="currency",
            field=models.CharField(default=venues.models.default_currency, max_length=3),
        ),
        migrations.AlterField(
            model_name="receipt",
            name="currency",
            field=models.CharField(default=venues.models.default_currency, max_length=3),
        ),
        migrations.AlterField(
            model_name="paymentauditlog",
            name="action",
            field=models.CharField(
                choices=[
                    ("PAYMENT_REFUND", "Payment refund"),
                    ("PAYMENT_STATUS_UPDATE", "Payment status update"),
                    ("PAYMENT_MANUAL_VERIFICATION", "Payment manual verification"),
                ],
                max_length=30,
            ),
        ),
    ]
