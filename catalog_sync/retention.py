import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import OrderLine, OrderSummary, Product

logger = logging.getLogger(__name__)


def prune_old_orders(days: Optional[int] = None) -> dict:
    """Delete order lines and summaries created before the retention window."""
    days = settings.ORDER_RETENTION_DAYS if days is None else days
    cutoff = timezone.now() - timedelta(days=days)

    with transaction.atomic():
        lines, _ = OrderLine.objects.filter(source_created_at__lt=cutoff).delete()
        summaries, _ = OrderSummary.objects.filter(source_created_at__lt=cutoff).delete()

    logger.info("Cleaned up %d order lines and %d orders older than %d days.", lines, summaries, days)
    return {'order_lines': lines, 'orders': summaries}


def prune_unavailable_products() -> dict:
    deleted, _ = Product.objects.filter(is_available=False).delete()
    logger.info("Cleaned up %d unavailable products.", deleted)
    return {'products': deleted}
