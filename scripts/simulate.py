"""
Order Lifecycle Simulation

Places orders concurrently and drives each through its lifecycle while firing
duplicate and conflicting status updates at the same time, to show that only
one update per step wins.

Run from project root with the API up: python scripts/simulate.py --orders 30
"""

import argparse
import asyncio
import random
import sys
import time
from collections import Counter
from datetime import datetime
from typing import Any, Optional

import httpx

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8001"

CUSTOMERS = ["Yuki Tanaka", "Lucas Peeters", "Emma Janssens", "Noah Maes", "Sofia Dubois", "Kenji Sato"]
STREETS = ["Rue Neuve", "Avenue Louise", "Chaussée d'Ixelles", "Rue Haute", "Boulevard Anspach"]
MENU = [
    {"sushi_roll_id": 1, "name": "California Roll", "unit_price": "8.50"},
    {"sushi_roll_id": 2, "name": "Dragon Roll", "unit_price": "12.50"},
    {"sushi_roll_id": 3, "name": "Salmon Nigiri", "unit_price": "6.00"},
    {"sushi_roll_id": 4, "name": "Spicy Tuna Roll", "unit_price": "10.00"},
    {"custom_roll_id": 7, "name": "Custom Roll", "unit_price": "14.00"},
]

PICKUP_PATH = ["accepted", "in_preparation", "ready", "ready_for_pickup", "completed"]
DELIVERY_PATH = ["accepted", "in_preparation", "ready", "out_for_delivery", "completed"]


def generate_order_payload() -> dict[str, Any]:
    order_type = random.choice(["pickup", "delivery"])
    payload = {
        "order_type": order_type,
        "customer_id": random.choice([None, random.randint(1, 20)]),
        "customer_name": random.choice(CUSTOMERS),
        "customer_phone": f"+32 470 {random.randint(10, 99)} {random.randint(10, 99)} {random.randint(10, 99)}",
        "items": [
            {**random.choice(MENU), "quantity": random.randint(1, 3)}
            for _ in range(random.randint(1, 4))
        ],
        "payment_method": random.choice(["stripe", "cash_on_delivery", "godpay"]),
    }
    if order_type == "delivery":
        payload["delivery_address"] = f"{random.choice(STREETS)} {random.randint(1, 200)}, 1000 Brussels"
    return payload


async def put_status(client: httpx.AsyncClient, order_id: int, status: str) -> str:
    """Returns the outcome: changed, noop, conflict or error."""
    response = await client.put(
        f"{API_BASE_URL}/api/orders/{order_id}/status",
        json={"status": status, "actor_id": 1},
        timeout=30.0,
    )
    if response.status_code == 200:
        return "changed" if response.json()["changed"] else "noop"
    if response.status_code == 409:
        return "conflict"
    return "error"


async def pay(client: httpx.AsyncClient, order: dict[str, Any]) -> Optional[str]:
    method = order["payment_method"]
    if method == "stripe":
        # Card flow goes through the mock processor in development mode
        body = {"order_id": order["id"], "payment_method": "stripe", "payment_token": "pm_card_visa"}
    else:
        body = {"order_id": order["id"], "payment_method": method}
    response = await client.post(f"{API_BASE_URL}/api/payments/process", json=body, timeout=30.0)
    if response.status_code != 200:
        return None
    return response.json()["payment_status"]


async def run_order(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    start_time = time.time()
    outcomes: Counter = Counter()

    response = await client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload(), timeout=30.0)
    if response.status_code != 201:
        return {"order_num": order_num, "success": False, "error": response.text[:100], "outcomes": outcomes}
    order = response.json()

    payment_status = await pay(client, order)
    path = PICKUP_PATH if order["order_type"] == "pickup" else DELIVERY_PATH

    # Occasionally an order is cancelled right after acceptance
    if random.random() < 0.1:
        path = ["accepted", "cancelled"]

    for status in path:
        # Two admins press the same button, sometimes a third presses the wrong one
        requests = [put_status(client, order["id"], status), put_status(client, order["id"], status)]
        if random.random() < 0.3:
            requests.append(put_status(client, order["id"], "cancelled" if status != "cancelled" else "accepted"))
        for outcome in await asyncio.gather(*requests):
            outcomes[outcome] += 1

    final = await client.get(f"{API_BASE_URL}/api/orders/track/{order['order_number']}/history")
    history = final.json()

    return {
        "order_num": order_num,
        "success": True,
        "order_number": order["order_number"],
        "final_status": history["status"],
        "consistent": history["consistent"],
        "payment_status": payment_status,
        "outcomes": outcomes,
        "time": round(time.time() - start_time, 3),
    }


async def run_simulation(num_orders: int) -> dict[str, Any]:
    print("=" * 70)
    print("🍣 ORDER LIFECYCLE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        results = await asyncio.gather(*(run_order(client, i + 1) for i in range(num_orders)))
    total_time = round(time.time() - start_time, 2)

    placed = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    outcomes: Counter = Counter()
    for r in results:
        outcomes.update(r["outcomes"])
    final_statuses = Counter(r["final_status"] for r in placed)
    inconsistent = [r for r in placed if not r["consistent"]]

    print("\n📊 RESULTS")
    print(f"   Orders placed: {len(placed)}/{num_orders}")
    print(f"   Final statuses: {dict(final_statuses)}")
    print(f"   Status updates: {dict(outcomes)}")
    print(f"   Inconsistent histories: {len(inconsistent)}")
    print(f"   Total time: {total_time}s")

    if failed:
        print("\n⚠️  Failed orders (first 5):")
        for f in failed[:5]:
            print(f"   #{f['order_num']}: {f.get('error')}")

    if inconsistent:
        print("\n❌ Orders whose history does not replay:")
        for r in inconsistent:
            print(f"   {r['order_number']}")

    print("=" * 70)
    return {"placed": len(placed), "failed": len(failed), "inconsistent": len(inconsistent)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order lifecycle simulation")
    parser.add_argument("--orders", type=int, default=30, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(args.orders))
    sys.exit(1 if summary["inconsistent"] else 0)
