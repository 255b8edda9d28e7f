"""Check a subscriber's billing mirror against the subscription ledger.

Usage:
    cd backend
    python -m scripts.check_subscription <phone>

Example:
    python -m scripts.check_subscription 08012345678
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import text
from airtime_billing.core.database import engine
from airtime_billing.modules.identity.phone import format_phone


async def check_subscription(raw_phone: str):
    """Print the mirror, ledger rows and recent deliveries for a phone."""
    phone = format_phone(raw_phone)

    async with engine.begin() as conn:
        print(f"\n{'='*60}")
        print(f"Checking subscription for phone: {phone}")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT id, subscription_status, subscription_plan, subscription_end_date
                FROM users
                WHERE phone_formatted = :phone
            """),
            {"phone": phone}
        )
        user = result.fetchone()

        if not user:
            print(f"\n✗ No user found for phone")
            return

        print(f"\n✓ User found:")
        print(f"  ID: {user[0]}")
        print(f"  Mirror status: {user[1]}")
        print(f"  Mirror plan: {user[2]}")
        print(f"  Mirror end date: {user[3]}")

        print(f"\n{'='*60}")
        print("Subscriptions (newest first):")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT id, plan_type, amount, status, start_date, end_date,
                       renewal_count, aggregator_transaction_id, telco_status_code
                FROM subscriptions
                WHERE user_id = :user_id
                ORDER BY created_at DESC
                LIMIT 10
            """),
            {"user_id": user[0]}
        )
        subscriptions = result.fetchall()

        if subscriptions:
            for sub in subscriptions:
                print(f"\n  Subscription: {sub[0]}")
                print(f"    Plan: {sub[1]} ({sub[2]} kobo)")
                print(f"    Status: {sub[3]}")
                print(f"    Period: {sub[4]} to {sub[5]}")
                print(f"    Renewals: {sub[6]}")
                print(f"    Transaction: {sub[7]}")
                print(f"    Telco status code: {sub[8]}")
        else:
            print("  No subscriptions found")

        print(f"\n{'='*60}")
        print("Recent webhook deliveries:")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT event_type, transaction_id, received_at
                FROM telco_webhook_deliveries
                WHERE phone = :phone
                ORDER BY received_at DESC
                LIMIT 10
            """),
            {"phone": phone}
        )
        deliveries = result.fetchall()

        if deliveries:
            for delivery in deliveries:
                print(f"  {delivery[2]}  {delivery[0]}  {delivery[1]}")
        else:
            print("  No deliveries recorded")

        print(f"\n{'='*60}")
        print("Analysis:")
        print(f"{'='*60}")

        active = [sub for sub in subscriptions if sub[3] == "active"]
        if len(active) > 1:
            print(f"\n⚠️  {len(active)} active subscriptions; expected at most one")
        if active and user[1] != "active":
            print(f"\n⚠️  Ledger has an active subscription but mirror is '{user[1]}'")

            fix = input("\nDo you want to resync the mirror from the ledger? (y/n): ").strip().lower()
            if fix == 'y':
                await conn.execute(
                    text("""
                        UPDATE users
                        SET subscription_status = 'active',
                            subscription_plan = :plan,
                            subscription_end_date = :end_date
                        WHERE id = :user_id
                    """),
                    {"plan": active[0][1], "end_date": active[0][5], "user_id": user[0]}
                )
                print(f"✓ Mirror updated from subscription {active[0][0]}")
        elif not active and user[1] == "active":
            print(f"\n⚠️  Mirror is active but the ledger has no active subscription")
        else:
            print(f"\n✓ Mirror and ledger agree")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m scripts.check_subscription <phone>")
        print("\nExample:")
        print("  python -m scripts.check_subscription 08012345678")
        sys.exit(1)

    asyncio.run(check_subscription(sys.argv[1]))
