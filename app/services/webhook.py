import httpx
import asyncio
import logging
import time
from app.core.config import settings
from app.core.metrics import webhook_deliveries, webhook_duration

logger = logging.getLogger(__name__)


async def send_webhook(event: str, payload: dict, retries: int | None = None) -> bool:
    """POST one notification event to WEBHOOK_URL, retrying with exponential backoff."""
    if retries is None:
        retries = settings.WEBHOOK_RETRIES

    backoff = 1.0
    body = {"event": event, "data": payload}
    subject = payload.get("order_id") or payload.get("client_id")

    for attempt in range(1, retries + 1):
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT) as client:
                response = await client.post(settings.WEBHOOK_URL, json=body)

                if 200 <= response.status_code < 300:
                    webhook_duration.labels(status="success").observe(time.time() - start_time)
                    webhook_deliveries.labels(status="success").inc()
                    logger.info(f"Webhook {event} delivered for {subject}")
                    return True
                else:
                    webhook_deliveries.labels(status="rejected").inc()
                    logger.warning(
                        f"Webhook {event} delivery failed (attempt {attempt}/{retries}): "
                        f"Status {response.status_code} for {subject}"
                    )
        except httpx.TimeoutException:
            webhook_deliveries.labels(status="timeout").inc()
            logger.warning(f"Webhook {event} timeout (attempt {attempt}/{retries}) for {subject}")
        except httpx.HTTPError as e:
            webhook_deliveries.labels(status="error").inc()
            logger.warning(f"Webhook {event} delivery error (attempt {attempt}/{retries}): {e} for {subject}")

        if attempt < retries:
            await asyncio.sleep(backoff)
            backoff *= 2.0

    logger.error(f"Webhook {event} delivery failed after {retries} attempts for {subject}")
    return False
