"""
Services Module

Each external dependency has a mock (development) and a real implementation.

Services:
    - payment: Stripe payment processing
    - excel_manager: Process-safe Excel ledger of finished orders
"""

from hidasushi.services.excel_manager import ExcelManager, build_export_payload

__all__ = ["ExcelManager", "build_export_payload"]
