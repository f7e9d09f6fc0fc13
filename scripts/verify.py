"""
History Verification Script

Checks that every order's status history replays to its live status and,
when present, that the Excel ledger holds each finished order once.

Run from project root with the API up: python scripts/verify.py
"""

import argparse
import os
import sys
from datetime import datetime

import httpx
import pandas as pd

API_BASE_URL = "http://localhost:8001"
EXCEL_FILE = os.path.join("data", "orders.xlsx")
PAGE_SIZE = 100


def fetch_all_orders(client: httpx.Client) -> list[dict]:
    orders, skip = [], 0
    while True:
        response = client.get(f"{API_BASE_URL}/api/orders", params={"skip": skip, "limit": PAGE_SIZE})
        response.raise_for_status()
        page = response.json()["orders"]
        orders.extend(page)
        if len(page) < PAGE_SIZE:
            return orders
        skip += PAGE_SIZE


def verify_histories() -> bool:
    print("=" * 60)
    print("🔍 STATUS HISTORY VERIFICATION")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    broken = []
    with httpx.Client(timeout=30.0) as client:
        orders = fetch_all_orders(client)
        for order in orders:
            response = client.get(f"{API_BASE_URL}/api/orders/track/{order['order_number']}/history")
            response.raise_for_status()
            data = response.json()

            replayed = data["history"][-1]["new_status"] if data["history"] else None
            if not data["consistent"] or replayed != order["status"]:
                broken.append((order["order_number"], order["status"], replayed))

    print(f"\n📊 Orders checked: {len(orders)}")
    if broken:
        print(f"❌ {len(broken)} order(s) with a broken history:")
        for number, live, replayed in broken:
            print(f"   {number}: live={live} replayed={replayed}")
    else:
        print("✅ Every history replays to the live status")
    return not broken


def verify_ledger() -> bool:
    print("\n" + "=" * 60)
    print("📄 EXCEL LEDGER")
    print("=" * 60)

    if not os.path.exists(EXCEL_FILE):
        print(f"   {EXCEL_FILE} not found (is the Celery worker running?)")
        return True

    df = pd.read_excel(EXCEL_FILE, engine="openpyxl")
    print(f"   Rows: {len(df)}")

    duplicates = int(df["order_number"].duplicated().sum())
    if duplicates:
        print(f"⚠️ {duplicates} duplicate order number(s) in the ledger")

    completed = df[df["final_status"] == "completed"]
    print(f"   Completed revenue: €{completed['total'].astype(float).sum():.2f}")
    if "preparation_minutes" in df.columns and df["preparation_minutes"].notna().any():
        print(f"   Average preparation: {df['preparation_minutes'].mean():.1f} min")
    return duplicates == 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify order histories and the Excel ledger")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()
    API_BASE_URL = args.url

    ok = verify_histories()
    ok = verify_ledger() and ok
    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)
    sys.exit(0 if ok else 1)
