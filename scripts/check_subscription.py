"""Show the billing state of an organization.

Usage:
    python -m scripts.check_subscription <organization_id>

Example:
    python -m scripts.check_subscription org_4281aaf4
"""

import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import text

from billing_engine.core.database import engine


async def check_subscription(organization_id: str):
    """Print subscriptions, payments and usage counters for an organization."""

    async with engine.begin() as conn:
        print(f"\n{'='*60}")
        print(f"Checking subscription for organization: {organization_id}")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT id, plan, status, current_period_start,
                       current_period_end, created_at
                FROM subscriptions
                WHERE organization_id = :organization_id
                ORDER BY created_at DESC
            """),
            {"organization_id": organization_id}
        )
        subscriptions = result.fetchall()

        if subscriptions:
            for sub in subscriptions:
                print(f"\n  ID: {sub[0]}")
                print(f"  Plan: {sub[1]}")
                print(f"  Status: {sub[2]}")
                print(f"  Period: {sub[3]} to {sub[4]}")
                print(f"  Created: {sub[5]}")
        else:
            print("\nNo subscription found for organization")

        print(f"\n{'='*60}")
        print("Payments:")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT provider_payment_id, amount, currency, status, created_at
                FROM payments
                WHERE organization_id = :organization_id
                ORDER BY created_at DESC
                LIMIT 10
            """),
            {"organization_id": organization_id}
        )
        for payment in result.fetchall():
            print(f"  {payment[4]}  {payment[3]:<10} {payment[1]} {payment[2]}  {payment[0]}")

        print(f"\n{'='*60}")
        print("Usage:")
        print(f"{'='*60}")

        result = await conn.execute(
            text("""
                SELECT resource_type, current_value, usage_limit, reset_at
                FROM organization_usage
                WHERE organization_id = :organization_id
            """),
            {"organization_id": organization_id}
        )
        for usage in result.fetchall():
            print(f"  {usage[0]}: {usage[1]}/{usage[2]} (resets {usage[3]})")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(check_subscription(sys.argv[1]))
