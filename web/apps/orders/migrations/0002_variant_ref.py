from django.db import migrations, models


def copy_variant_ids(apps, schema_editor):
    OrderItemModel = apps.get_model("orders", "OrderItemModel")
    StockMovement = apps.get_model("orders", "StockMovement")
    OrderItemModel.objects.filter(variant__isnull=False).update(variant_ref=models.F("variant_id"))
    StockMovement.objects.filter(variant__isnull=False).update(variant_ref=models.F("variant_id"))


class Migration(migrations.Migration):

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="orderitemmodel",
            name="variant_ref",
            field=models.UUIDField(blank=True, editable=False, null=True),
        ),
        migrations.AddField(
            model_name="stockmovement",
            name="variant_ref",
            field=models.UUIDField(blank=True, null=True),
        ),
        migrations.RunPython(copy_variant_ids, migrations.RunPython.noop),
    ]
