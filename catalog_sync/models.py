from django.db import models


class SyncJobState(models.Model):
    IDLE = 'idle'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'
    STATUS_CHOICES = [
        (IDLE, 'Idle'),
        (IN_PROGRESS, 'In progress'),
        (COMPLETED, 'Completed'),
        (FAILED, 'Failed'),
    ]

    name = models.CharField(max_length=200, unique=True)
    cursor = models.TextField(null=True, blank=True)
    filter_query = models.TextField(null=True, blank=True)
    last_run_at = models.DateTimeField(null=True)
    last_success_at = models.DateTimeField(null=True)
    window_started_at = models.DateTimeField(null=True, blank=True)
    total_processed = models.BigIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=IDLE)
    last_error = models.TextField(null=True, blank=True)
    is_running = models.BooleanField(default=False)
    run_id = models.CharField(max_length=255, null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.status}, processed={self.total_processed})"


class CollectionSyncState(models.Model):
    collection_id = models.CharField(max_length=100, unique=True)
    handle = models.CharField(max_length=255)
    title = models.CharField(max_length=255)
    body_html = models.TextField(blank=True, default='')
    queued_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.handle} ({self.collection_id})"


class Collection(models.Model):
    external_id = models.CharField(max_length=100, unique=True)
    title = models.CharField(max_length=255)
    handle = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True, default='')
    description_html = models.TextField(blank=True, default='')
    image = models.JSONField(null=True, blank=True)
    product_count = models.IntegerField(default=0)
    published_at = models.DateTimeField(null=True, blank=True)
    source_updated_at = models.DateTimeField(null=True, blank=True)
    content_hash = models.CharField(max_length=64, blank=True, default='')
    last_synced_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.title} ({self.handle})"


class Product(models.Model):
    external_id = models.CharField(max_length=100, unique=True)
    product_id = models.CharField(max_length=50, unique=True)
    handle = models.CharField(max_length=255, unique=True, null=True, blank=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    price = models.FloatField(default=0)
    compare_at_price = models.FloatField(null=True, blank=True)
    categories = models.JSONField(default=list, blank=True)
    tags = models.JSONField(default=list, blank=True)
    structured_tags = models.JSONField(default=dict, blank=True)
    brand = models.CharField(max_length=255, blank=True, default='')
    product_group = models.CharField(max_length=255, blank=True, default='')
    vendor = models.CharField(max_length=255, blank=True, default='')
    product_type = models.CharField(max_length=255, blank=True, default='')
    collections = models.JSONField(default=list, blank=True)
    collection_handles = models.JSONField(default=list, blank=True)
    attributes = models.JSONField(default=dict, blank=True)
    variants = models.JSONField(default=list, blank=True)
    images = models.JSONField(default=list, blank=True)
    image_url = models.TextField(blank=True, default='')
    product_url = models.TextField(blank=True, default='')
    is_available = models.BooleanField(default=True)
    source_created_at = models.DateTimeField(null=True, blank=True)
    source_updated_at = models.DateTimeField(null=True, blank=True)
    content_hash = models.CharField(max_length=64, blank=True, default='')
    last_synced_at = models.DateTimeField(auto_now=True)

    # Owned by the embedding service; sync never writes these.
    has_embedding = models.BooleanField(default=False)
    vector_id = models.CharField(max_length=100, null=True, blank=True)

    def __str__(self):
        return f"{self.name} ({self.external_id})"


class OrderLine(models.Model):
    order_id = models.BigIntegerField()
    product_id = models.CharField(max_length=50)
    order_name = models.CharField(max_length=50, blank=True, default='')
    quantity = models.IntegerField()
    source_created_at = models.DateTimeField(null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['order_id', 'product_id'], name='unique_order_line'),
        ]
        indexes = [
            models.Index(fields=['product_id'], name='orderline_product_idx'),
            models.Index(fields=['source_created_at'], name='orderline_created_idx'),
        ]

    def __str__(self):
        return f"order {self.order_id} / product {self.product_id} x{self.quantity}"


class OrderSummary(models.Model):
    order_id = models.BigIntegerField(unique=True)
    order_name = models.CharField(max_length=50, blank=True, default='')
    total_quantity = models.IntegerField(default=0)
    source_created_at = models.DateTimeField(null=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"order {self.order_id} (qty={self.total_quantity})"
