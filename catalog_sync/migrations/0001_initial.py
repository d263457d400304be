from django.db import migrations, models

PLATFORM_CHOICES = [
    ('woocommerce', 'WooCommerce'),
    ('shopify', 'Shopify'),
    ('gallery_store', 'Gallery store'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='SyncRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('product_id', models.CharField(max_length=100)),
                ('platform', models.CharField(choices=PLATFORM_CHOICES, max_length=32)),
                ('external_id', models.CharField(blank=True, max_length=255, null=True)),
                ('assigned_by', models.CharField(blank=True, choices=PLATFORM_CHOICES, max_length=32)),
                ('status', models.CharField(
                    choices=[
                        ('never_synced', 'Never synced'),
                        ('synced', 'Synced'),
                        ('pending', 'Pending'),
                        ('error', 'Error'),
                    ],
                    default='never_synced',
                    max_length=20,
                )),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True)),
                ('checkpoint', models.CharField(blank=True, max_length=32)),
                ('step_state', models.JSONField(blank=True, default=dict)),
                ('content_hash', models.CharField(blank=True, max_length=64)),
                ('lease_owner', models.CharField(blank=True, max_length=64)),
                ('leased_until', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.AddConstraint(
            model_name='syncrecord',
            constraint=models.UniqueConstraint(fields=('product_id', 'platform'), name='unique_product_platform'),
        ),
    ]
