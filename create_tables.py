"""
Script to create all database tables.

Creates the order and webhook tables and provisions the webhook
settings row. Use alembic for managed environments.
"""
import asyncio
from storefront.database import engine, AsyncSessionLocal
from storefront.models.base import Base
# Import all models to register them with Base
from storefront.models.order import Customer, Order, Product  # noqa: F401
from storefront.models.webhook import WebhookSettings, WebhookQueueEntry, WebhookLog  # noqa: F401
from storefront.services.settings_service import SettingsService


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def provision_settings():
    """Create the webhook settings row if it is missing."""
    async with AsyncSessionLocal() as db:
        webhook_settings = await SettingsService(db).ensure_settings()
    if webhook_settings is None:
        print("Could not provision webhook settings")
    else:
        print(f"Webhook settings ready (enabled={webhook_settings.enabled})")


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    await provision_settings()
    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
