"""
Create the webhook_deliveries ledger table without Alembic.

For local development against PostgreSQL. Pass --drop to recreate the
table from scratch (deletes all delivery history).
"""
import asyncio
import sys

from leadflow.database import engine
from leadflow.models.webhook import WebhookDelivery


async def main(drop: bool = False):
    table = WebhookDelivery.__table__
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(table.drop, checkfirst=True)
            print(f"Dropped {table.name}")
        await conn.run_sync(table.create, checkfirst=True)
    await engine.dispose()
    print(f"{table.name} ready")


if __name__ == "__main__":
    asyncio.run(main(drop="--drop" in sys.argv))
