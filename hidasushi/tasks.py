"""
Celery Tasks
Background export of finished orders to the Excel ledger.
"""

import logging
import time
from datetime import datetime, timezone

from filelock import Timeout

from hidasushi.celery_worker import celery_app
from hidasushi.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Timeout, OSError),
    retry_backoff=True,
)
def export_order_to_excel(self, order_data: dict) -> dict:
    """
    Append a finished order to the Excel ledger.

    Args:
        order_data: Payload built by ``build_export_payload``
    """
    task_id = self.request.id
    order_number = order_data.get("order_number", "unknown")

    logger.info(f"📋 Task {task_id}: exporting order {order_number}")
    start_time = time.time()

    result = ExcelManager().export_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"✅ Task {task_id}: order {order_number} exported in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: order {order_number} not exported - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """Round trip through the broker to confirm a worker is consuming."""
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
