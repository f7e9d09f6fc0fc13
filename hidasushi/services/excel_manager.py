"""
Excel Ledger with Concurrency Control

Appends finished orders (completed or cancelled) to an Excel workbook.
Several Celery worker processes may write at once, so every read-modify-write
of the workbook runs under a file lock.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from hidasushi.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Process-safe Excel ledger of finished orders."""

    ORDER_COLUMNS = [
        "order_id",
        "order_number",
        "order_type",
        "created_at",
        "customer_id",
        "customer_name",
        "customer_phone",
        "customer_email",
        "delivery_address",
        "location",
        "items",
        "subtotal",
        "delivery_fee",
        "tax_amount",
        "total",
        "payment_method",
        "payment_status",
        "final_status",
        "status_path",
        "preparation_minutes",
        "finished_at",
        "exported_at",
    ]

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.data_dir = Path(settings.data_directory)
        self.orders_file = self.data_dir / settings.excel_filename
        self.lock_file = self.data_dir / f"{settings.excel_filename}.lock"
        self.lock_timeout = settings.excel_lock_timeout

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        if self.orders_file.exists():
            try:
                return pd.read_excel(self.orders_file, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {self.orders_file}: {e}")
        return pd.DataFrame(columns=self.ORDER_COLUMNS)

    @staticmethod
    def build_row(order_data: dict[str, Any], export_time: str) -> dict[str, Any]:
        """Flatten an order snapshot and its history into one ledger row."""
        history = order_data.get("history") or []
        status_path = " > ".join(entry["new_status"] for entry in history)

        started = order_data.get("preparation_started_at")
        finished = order_data.get("preparation_completed_at")
        preparation_minutes = None
        if started and finished:
            delta = datetime.fromisoformat(finished) - datetime.fromisoformat(started)
            preparation_minutes = round(delta.total_seconds() / 60, 1)

        items = "; ".join(
            f"{item['quantity']}x {item['name']}" for item in order_data.get("items") or []
        )

        return {
            "order_id": order_data.get("id"),
            "order_number": order_data.get("order_number"),
            "order_type": order_data.get("order_type"),
            "created_at": order_data.get("created_at"),
            "customer_id": order_data.get("customer_id"),
            "customer_name": order_data.get("customer_name"),
            "customer_phone": order_data.get("customer_phone"),
            "customer_email": order_data.get("customer_email"),
            "delivery_address": order_data.get("delivery_address"),
            "location": order_data.get("location"),
            "items": items,
            "subtotal": order_data.get("subtotal"),
            "delivery_fee": order_data.get("delivery_fee"),
            "tax_amount": order_data.get("tax_amount"),
            "total": order_data.get("total"),
            "payment_method": order_data.get("payment_method"),
            "payment_status": order_data.get("payment_status"),
            "final_status": order_data.get("status"),
            "status_path": status_path,
            "preparation_minutes": preparation_minutes,
            "finished_at": order_data.get("completed_at") or order_data.get("cancelled_at"),
            "exported_at": export_time,
        }

    def export_order(self, order_data: dict[str, Any]) -> dict[str, Any]:
        """Append one order to the ledger under the file lock."""
        self._ensure_data_dir()

        order_number = order_data.get("order_number", "unknown")
        result = {
            "success": False,
            "message": "",
            "order_number": order_number,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_file), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for order {order_number}")

                df = self._load_or_create_df()
                export_time = datetime.now().isoformat()
                new_row = self.build_row(order_data, export_time)

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(self.orders_file), index=False, engine="openpyxl")

                logger.info(f"Order {order_number} exported to Excel")
                result["success"] = True
                result["message"] = f"Order {order_number} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for order {order_number}")

        return result

    def get_all_orders(self) -> list[dict[str, Any]]:
        if not self.orders_file.exists():
            return []
        df = pd.read_excel(self.orders_file, engine="openpyxl")
        return df.to_dict("records")

    def clear_all(self) -> None:
        for path in (self.orders_file, self.lock_file):
            if path.exists():
                path.unlink()
        logger.info("Excel ledger cleared")


def build_export_payload(order, records) -> dict[str, Any]:
    """JSON-serializable snapshot of a finished order for the export task."""

    def iso(value):
        return value.isoformat() if value is not None else None

    return {
        "id": order.id,
        "order_number": order.order_number,
        "order_type": order.order_type.value,
        "status": order.status.value,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_email": order.customer_email,
        "delivery_address": order.delivery_address,
        "location": order.location,
        "items": [{"name": item.name, "quantity": item.quantity} for item in order.items],
        "subtotal": str(order.subtotal),
        "delivery_fee": str(order.delivery_fee),
        "tax_amount": str(order.tax_amount),
        "total": str(order.total),
        "payment_method": order.payment_method.value,
        "payment_status": order.payment_status.value,
        "created_at": iso(order.created_at),
        "preparation_started_at": iso(order.preparation_started_at),
        "preparation_completed_at": iso(order.preparation_completed_at),
        "completed_at": iso(order.completed_at),
        "cancelled_at": iso(order.cancelled_at),
        "history": [record.to_dict() for record in records],
    }
