#!/usr/bin/env python3
"""
Demo seed script — populates the database with sample data for demos.

!! NOT FOR PRODUCTION !!
This script creates test users with known passwords, a pricing setup, a
small fleet and some ride history. It is intended ONLY for local demos and
frontend development.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Reset the database and re-seed:
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

Login credentials after seeding:
    ┌──────────────────────────────┬───────────────────┬────────┐
    │ Email                        │ Password          │ Role   │
    ├──────────────────────────────┼───────────────────┼────────┤
    │ admin@bikedemo.cm            │ AdminDemo123!     │ ADMIN  │
    │ amina.njoya@example.com      │ AminaDemo123!     │ RIDER  │
    │ paul.mbarga@example.com      │ PaulDemo123!      │ RIDER  │
    │ chantal.ekane@example.com    │ ChantalDemo123!   │ RIDER  │
    └──────────────────────────────┴───────────────────┴────────┘
"""

import argparse
import asyncio
import os
import random
import sys
from datetime import datetime, timedelta, timezone

import httpx

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------

ADMIN = {
    "email": "admin@bikedemo.cm",
    "password": "AdminDemo123!",
    "first_name": "Admin",
    "last_name": "User",
}

RIDERS = [
    {
        "email": "amina.njoya@example.com",
        "password": "AminaDemo123!",
        "first_name": "Amina",
        "last_name": "Njoya",
        "phone": "+237670000001",
        "deposit": 5_000,
        "balance": 3_000,
        "rides": 4,
    },
    {
        "email": "paul.mbarga@example.com",
        "password": "PaulDemo123!",
        "first_name": "Paul",
        "last_name": "Mbarga",
        "phone": "+237670000002",
        "deposit": 5_000,
        "balance": 800,
        "rides": 3,
    },
    {
        # Short on funds: the last ride ends with an unpaid balance.
        "email": "chantal.ekane@example.com",
        "password": "ChantalDemo123!",
        "first_name": "Chantal",
        "last_name": "Ekane",
        "phone": "+237670000003",
        "deposit": 2_000,
        "balance": 300,
        "rides": 2,
    },
]

PLANS = [
    {
        "name": "Standard",
        "hourly_rate": 200,
        "daily_rate": 2_000,
        "weekly_rate": 10_000,
        "monthly_rate": 30_000,
        "minimum_hours": 1,
        "sort_order": 0,
    },
    {
        "name": "Electric",
        "hourly_rate": 400,
        "daily_rate": 3_500,
        "weekly_rate": 18_000,
        "monthly_rate": 55_000,
        "minimum_hours": 1,
        "sort_order": 1,
    },
]

STATIONS = [
    {"lat": 4.0511, "lng": 9.7679, "address": "Akwa, Douala"},
    {"lat": 4.0435, "lng": 9.6966, "address": "Bonaberi, Douala"},
    {"lat": 4.0614, "lng": 9.7375, "address": "Bonapriso, Douala"},
    {"lat": 4.0829, "lng": 9.7880, "address": "Makepe, Douala"},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def xaf(amount: int) -> str:
    return f"{amount:,} XAF".replace(",", " ")


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def signup(client: httpx.AsyncClient, user: dict) -> tuple[str, str]:
    """Sign up a user, return (user_id, JWT token)."""
    body = {k: user[k] for k in ("email", "password", "first_name", "last_name")}
    if user.get("phone"):
        body["phone"] = user["phone"]
    resp = await client.post(f"{BASE_URL}/auth/signup", json=body)
    resp.raise_for_status()
    data = resp.json()
    return data["user_id"], data["token"]


async def admin_post(client: httpx.AsyncClient, token: str, path: str, body: dict) -> dict:
    resp = await client.post(f"{BASE_URL}{path}", json=body, headers=auth_header(token))
    resp.raise_for_status()
    return resp.json()


async def fund_wallet(client: httpx.AsyncClient, admin_token: str, user_id: str,
                      amount: int, ledger: str) -> None:
    await admin_post(
        client, admin_token, f"/admin/wallets/{user_id}/deposits",
        {"amount": amount, "payment_method": "CASH", "ledger": ledger},
    )


async def get_wallet(client: httpx.AsyncClient, token: str) -> dict:
    resp = await client.get(f"{BASE_URL}/wallet", headers=auth_header(token))
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed_pricing(client: httpx.AsyncClient, admin_token: str) -> list[dict]:
    """Active configuration, two plans, a weekday rush-hour rule and a promotion."""
    await admin_post(
        client, admin_token, "/admin/pricing/configs",
        {"name": "Douala launch", "unlock_fee": 100, "base_hourly_rate": 200},
    )
    plans = [await admin_post(client, admin_token, "/admin/pricing/plans", p) for p in PLANS]
    for plan in plans:
        log(f"Plan {plan['name']}: {xaf(plan['hourly_rate'])}/h")

    # Monday..Friday (1..5), 07:00-09:00
    for day in range(1, 6):
        await admin_post(
            client, admin_token, "/admin/pricing/rules",
            {"name": f"Morning rush ({day})", "day_of_week": day,
             "start_hour": 7, "end_hour": 9, "multiplier": "1.25"},
        )
    log("Rule: weekday morning rush x1.25")

    now = datetime.now(timezone.utc)
    await admin_post(
        client, admin_token, "/admin/pricing/promotions",
        {
            "name": "Welcome week",
            "discount_type": "PERCENTAGE",
            "discount_value": "10",
            "start_date": (now - timedelta(days=1)).isoformat(),
            "end_date": (now + timedelta(days=6)).isoformat(),
            "plan_ids": [plans[0]["id"]],
        },
    )
    log("Promotion: Welcome week, 10% off Standard")
    return plans


async def seed_fleet(client: httpx.AsyncClient, admin_token: str, plans: list[dict]) -> list[dict]:
    bikes = []
    for i in range(6):
        plan = plans[1] if i >= 4 else plans[0]
        station = STATIONS[i % len(STATIONS)]
        bike = await admin_post(
            client, admin_token, "/admin/bikes",
            {
                "code": f"DLA-{i + 1:03d}",
                "model": plan["name"],
                "pricing_plan_id": plan["id"],
                "latitude": station["lat"],
                "longitude": station["lng"],
            },
        )
        bikes.append(bike)
    log(f"{len(bikes)} bikes registered")
    return bikes


async def backdate_ride(ride_id: str, minutes: int) -> None:
    """Move a ride's start time back directly in the DB so it has a duration.

    The API only ever stamps "now", so a demo ride ended seconds after it
    started would always cost the minimum.
    """
    import uuid as uuid_mod
    from sqlalchemy import update
    from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
    from bikeshare.config import settings
    from bikeshare.models.ride import Ride

    engine = create_async_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession)

    async with session_factory() as session:
        await session.execute(
            update(Ride)
            .where(Ride.id == uuid_mod.UUID(ride_id))
            .values(start_time=datetime.now(timezone.utc) - timedelta(minutes=minutes))
        )
        await session.commit()

    await engine.dispose()


async def ride(client: httpx.AsyncClient, token: str, bike: dict) -> dict:
    """Start a ride, backdate it, end it. Returns the ended ride."""
    start, end = random.sample(STATIONS, 2)
    resp = await client.post(
        f"{BASE_URL}/rides",
        json={"bike_id": bike["id"], "start_location": start},
        headers=auth_header(token),
    )
    resp.raise_for_status()
    ride_id = resp.json()["id"]

    await backdate_ride(ride_id, random.randint(20, 150))

    resp = await client.post(
        f"{BASE_URL}/rides/{ride_id}/end",
        json={"end_location": end, "distance_km": round(random.uniform(1.0, 9.0), 1)},
        headers=auth_header(token),
    )
    resp.raise_for_status()
    return resp.json()


async def promote_to_admin(admin_email: str) -> None:
    """Directly update the user's role to ADMIN in the database.

    This bypasses the API since there's no admin-promotion endpoint
    (admin provisioning is an operator action, not self-service).
    """
    from sqlalchemy import update
    from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
    from bikeshare.config import settings
    from bikeshare.models.user import User, UserType

    engine = create_async_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession)

    async with session_factory() as session:
        await session.execute(
            update(User)
            .where(User.email == admin_email)
            .values(user_type=UserType.ADMIN)
        )
        await session.commit()

    await engine.dispose()


async def seed(base_url: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn bikeshare.main:app --reload\n")
            sys.exit(1)

        # --- Admin ---
        print("Creating admin user...")
        _, admin_token = await signup(client, ADMIN)
        await promote_to_admin(ADMIN["email"])
        log(f"Admin: {ADMIN['email']} / {ADMIN['password']}")

        print("\nConfiguring pricing...")
        plans = await seed_pricing(client, admin_token)

        print("\nRegistering bikes...")
        bikes = await seed_fleet(client, admin_token, plans)

        # --- Riders ---
        sessions: list[tuple[str, str]] = []
        for rider in RIDERS:
            name = f"{rider['first_name']} {rider['last_name']}"
            print(f"\nCreating {name}...")
            user_id, token = await signup(client, rider)
            sessions.append((user_id, token))
            log(f"Login: {rider['email']} / {rider['password']}")

            await fund_wallet(client, admin_token, user_id, rider["deposit"], "DEPOSIT")
            await fund_wallet(client, admin_token, user_id, rider["balance"], "BALANCE")
            log(f"Deposit {xaf(rider['deposit'])}, balance {xaf(rider['balance'])}")

            for _ in range(rider["rides"]):
                ended = await ride(client, token, random.choice(bikes))
                log(
                    f"Ride {ended['duration_minutes']} min: {xaf(ended['cost'])} "
                    f"({ended['payment_status']})"
                )
                if ended["payment_status"] == "FAILED":
                    log("Unpaid balance; further rides blocked until settled")
                    break

            wallet = await get_wallet(client, token)
            log(f"Final balance: {xaf(wallet['balance'])}")

        # --- A damage charge and a cash request to review ---
        print("\nCreating items for the admin queue...")
        first_id, _ = sessions[0]
        await admin_post(
            client, admin_token, "/admin/charges",
            {"user_id": first_id, "amount": 1_500, "reason": "Broken rear light"},
        )
        log(f"Damage charge on {RIDERS[0]['first_name']}: {xaf(1_500)}")

        _, second_token = sessions[1]
        await client.post(
            f"{BASE_URL}/wallet/cash-deposits",
            json={"amount": 2_000, "note": "Paid at Akwa kiosk"},
            headers=auth_header(second_token),
        )
        log(f"Pending cash deposit from {RIDERS[1]['first_name']}: {xaf(2_000)}")

    # --- Summary ---
    print("\n========================================")
    print("  SEED COMPLETE — Login Credentials")
    print("========================================")
    print(f"\n  {'Email':<30s} {'Password':<20s} {'Role'}")
    print(f"  {'─' * 30} {'─' * 20} {'─' * 6}")
    print(f"  {ADMIN['email']:<30s} {ADMIN['password']:<20s} ADMIN")
    for r in RIDERS:
        print(f"  {r['email']:<30s} {r['password']:<20s} RIDER")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "bikeshare.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample riders, pricing, bikes and rides for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed(args.base_url)


if __name__ == "__main__":
    asyncio.run(main())
