"""Run the billing sweeps manually, outside the Celery beat schedule.

Usage:
    python -m scripts.run_billing_sweeps
"""

import asyncio

from dotenv import load_dotenv
load_dotenv()

from billing_engine.core.database import async_session_maker
from billing_engine.modules.billing.unit_of_work import serializable_uow_factory
from billing_engine.modules.scheduler.service import (
    ExpireAllDueSubscriptions,
    ProcessPeriodicBilling,
)
from billing_engine.modules.subscription.events import CeleryAuditPublisher


async def main():
    """Run renewal first, then expiration."""
    print("\n" + "=" * 60)
    print("Running Billing Sweeps")
    print("=" * 60)

    uow_factory = serializable_uow_factory(async_session_maker)
    publisher = CeleryAuditPublisher()

    for sweep in (
        ProcessPeriodicBilling(uow_factory, publisher),
        ExpireAllDueSubscriptions(uow_factory, publisher),
    ):
        result = await sweep.execute()

        print(f"\n{sweep.sweep_name}:")
        print(f"  Total: {result.total}")
        print(f"  Succeeded: {result.succeeded}")
        print(f"  Failed: {result.failed}")
        for error in result.errors:
            print(f"    - {error.subscription_id} ({error.organization_id}): {error.error}")


if __name__ == "__main__":
    asyncio.run(main())
