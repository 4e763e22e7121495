"""Notifier service.

This module delivers pending notifications in publication order and moves each
subscription's watermark forward after a successful send.

Delivery is at-least-once: if the process stops between a send and the
watermark update, or the update fails, the article is sent again next cycle.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from feed_notifier.services.delivery import Delivery, format_notification
from feed_notifier.services.rate_limiter import RateLimiter
from feed_notifier.storage import database


logger = logging.getLogger(__name__)


async def send_pending_notifications(
    delivery: Delivery,
    rate_limiter: RateLimiter,
    cancel: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Deliver every pending notification once.

    A failed send leaves the watermark untouched so the article is retried on
    the next cycle. Later articles for the same subscription are held back for
    the rest of the cycle so the watermark cannot move past the failed one.
    Setting `cancel` stops the cycle before the next send.

    Args:
        delivery: Destination transport
        rate_limiter: Shared gate for all outbound messages
        cancel: Optional event that aborts the cycle

    Returns:
        Dictionary with:
        - pending: number of notifications found
        - delivered: number sent successfully
        - failed: number whose send failed
        - deferred: number held back behind a failed send
        - canceled: whether the cycle stopped early
    """
    notifications = await database.pending_notifications()

    report = {"pending": len(notifications), "delivered": 0, "failed": 0, "deferred": 0, "canceled": False}

    if not notifications:
        logger.info("No pending notifications to send out")
        return report

    failed_subscriptions = set()

    for notification in notifications:
        if notification.subscription_id in failed_subscriptions:
            report["deferred"] += 1
            continue

        if not await rate_limiter.wait(cancel):
            logger.info("Notification cycle canceled")
            report["canceled"] = True
            break

        try:
            await delivery.send(notification.channel_id, format_notification(notification))
        except Exception as e:
            logger.error(
                f"Send article [{notification.article_id}] to subscription "
                f"[{notification.subscription_id}]: {e}"
            )
            report["failed"] += 1
            failed_subscriptions.add(notification.subscription_id)
            continue

        report["delivered"] += 1
        logger.info(
            f"Notified subscription [{notification.subscription_id}] "
            f"of new article [{notification.article_id}]"
        )

        try:
            await database.update_last_pub_date(notification.subscription_id, notification.pub_date)
        except Exception as e:
            logger.error(f"Update pub_date for subscription [{notification.subscription_id}]: {e}")

    return report
