"""
Kitchen Race Simulation

Creates a batch of orders, then has several kitchen terminals push every
order through the lifecycle at the same time. Exactly one terminal must
win each step; the others must get 409 conflicting_transition (or
invalid_transition when they arrive after the order already moved on).

Run against a live server from project root:
    python scripts/simulate.py --orders 30 --terminals 4
"""

import argparse
import asyncio
import random
import sys
import time
from collections import Counter
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8001"

MENU_ITEMS = [
    {"product_name": "X-Burger", "price": 25.0},
    {"product_name": "X-Salada", "price": 27.5},
    {"product_name": "Batata Frita", "price": 14.0},
    {"product_name": "Refrigerante Lata", "price": 6.0},
    {"product_name": "Milkshake", "price": 18.0},
]

# Counter orders walk this path; the final step collects payment by hand
COUNTER_PATH = ["EM_PREPARO", "PRONTO", "ENTREGUE"]


def generate_order_payload() -> dict[str, Any]:
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 3)):
        items.append({**item, "quantity": random.randint(1, 3)})
    return {
        "items": items,
        "service_type": "BALCAO",
        "source": "SIMULATION",
        "billing_type": "DINHEIRO",
        "customer_name": f"Cliente {random.randint(1, 999)}",
    }


async def create_orders(client: httpx.AsyncClient, count: int) -> list[dict[str, Any]]:
    responses = await asyncio.gather(*[
        client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload())
        for _ in range(count)
    ])
    created = [r.json() for r in responses if r.status_code == 201]
    print(f"   Created {len(created)}/{count} orders")
    return created


async def terminal_step(
    client: httpx.AsyncClient,
    terminal: int,
    order_id: str,
    target: str,
    expected: str,
) -> str:
    """One terminal's attempt at one transition; returns the outcome code."""
    body = {
        "status": target,
        "expected_status": expected,
        "operator_id": f"kds-{terminal}",
        "operator_name": f"Terminal {terminal}",
        "confirm_payment": target == "ENTREGUE",
    }
    await asyncio.sleep(random.uniform(0, 0.01))
    try:
        response = await client.patch(
            f"{API_BASE_URL}/api/orders/{order_id}/status",
            json=body,
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return f"transport:{e.__class__.__name__}"
    if response.status_code == 200:
        return "applied"
    return response.json().get("error", str(response.status_code))


async def race_order(
    client: httpx.AsyncClient,
    order_id: str,
    terminals: int,
) -> dict[str, Any]:
    outcomes: Counter = Counter()
    violations = 0
    expected = "PENDENTE"
    for target in COUNTER_PATH:
        results = await asyncio.gather(*[
            terminal_step(client, t, order_id, target, expected)
            for t in range(1, terminals + 1)
        ])
        outcomes.update(results)
        if results.count("applied") != 1:
            violations += 1
        expected = target
    return {"order_id": order_id, "outcomes": outcomes, "violations": violations}


async def run_simulation(num_orders: int, terminals: int) -> dict[str, Any]:
    print("=" * 70)
    print("KITCHEN RACE SIMULATION")
    print("=" * 70)
    print(f"Orders: {num_orders}   Terminals: {terminals}   Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\nHealth: {health.json().get('status')}")

        orders = await create_orders(client, num_orders)
        results = await asyncio.gather(*[
            race_order(client, order["id"], terminals) for order in orders
        ])

    total_time = round(time.time() - start_time, 2)
    totals: Counter = Counter()
    for result in results:
        totals.update(result["outcomes"])
    violations = sum(r["violations"] for r in results)

    print("\n" + "=" * 70)
    print("RESULTS")
    print("=" * 70)
    for outcome, count in totals.most_common():
        print(f"   {outcome:<28} {count}")
    print(f"\nSteps with other than exactly one winner: {violations}")
    print(f"Total Time: {total_time}s")
    print("=" * 70)

    return {
        "orders": len(orders),
        "outcomes": dict(totals),
        "violations": violations,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Kitchen Race Simulation")
    parser.add_argument("--orders", type=int, default=30, help="Number of orders")
    parser.add_argument("--terminals", type=int, default=4, help="Concurrent kitchen terminals")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(args.orders, args.terminals))
    sys.exit(1 if summary["violations"] else 0)
