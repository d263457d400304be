from django.db import models

from .platforms import PLATFORM_CHOICES


class SyncRecord(models.Model):
    """Per (product, platform) sync state. Written only through IdentityLedger."""

    NEVER_SYNCED = 'never_synced'
    SYNCED = 'synced'
    PENDING = 'pending'
    ERROR = 'error'
    STATUS_CHOICES = [
        (NEVER_SYNCED, 'Never synced'),
        (SYNCED, 'Synced'),
        (PENDING, 'Pending'),
        (ERROR, 'Error'),
    ]

    product_id = models.CharField(max_length=100)
    platform = models.CharField(max_length=32, choices=PLATFORM_CHOICES)
    external_id = models.CharField(max_length=255, null=True, blank=True)
    # Platform that issued external_id; must equal `platform`.
    assigned_by = models.CharField(max_length=32, choices=PLATFORM_CHOICES, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=NEVER_SYNCED)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)
    checkpoint = models.CharField(max_length=32, blank=True)
    step_state = models.JSONField(default=dict, blank=True)
    content_hash = models.CharField(max_length=64, blank=True)
    lease_owner = models.CharField(max_length=64, blank=True)
    leased_until = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['product_id', 'platform'], name='unique_product_platform'),
        ]

    def __str__(self):
        return f"{self.product_id}@{self.platform} ({self.status}, ext={self.external_id or '-'})"
