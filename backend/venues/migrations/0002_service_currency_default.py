from django.db import migrations, models

import venues.models


class Migration(migrations.Migration):
    dependencies = [
        ("venues", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="service",
            name="currency",
            field=models.CharField(default=venues.models.default_currency, max_length=3),
        ),
    ]
