"""
Webhook settings service.

Reads and writes the singleton webhook_settings row. Reads return an
immutable snapshot; callers fetch one per operation and pass it along.
Neither read nor write raises: storage errors become None / False.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.logging_config import get_logger
from storefront.models.base import utcnow
from storefront.models.webhook import WebhookSettings
from storefront.schemas.webhook import SettingsUpdate, WebhookSettingsSnapshot


SETTINGS_ROW_ID = 1

log = get_logger(component="settings_provider")


class SettingsService:
    """Service for the webhook settings row."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self) -> WebhookSettings | None:
        stmt = (
            select(WebhookSettings)
            .where(WebhookSettings.id == SETTINGS_ROW_ID)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_settings(self) -> WebhookSettingsSnapshot | None:
        """
        Get the current webhook settings.

        Returns:
            Snapshot of the settings row, or None if the row is missing
            or cannot be read. None means "delivery disabled".
        """
        try:
            row = await self._get_row()
        except Exception as e:
            log.error("webhook_settings_read_failed", error=str(e))
            await self.db.rollback()
            return None

        if row is None:
            return None
        return WebhookSettingsSnapshot.model_validate(row)

    async def update_settings(self, changes: SettingsUpdate | dict) -> bool:
        """
        Overwrite the named settings fields.

        Args:
            changes: Fields to set. Unset fields are left alone.

        Returns:
            True if saved, False on any error
        """
        try:
            if isinstance(changes, dict):
                changes = SettingsUpdate(**changes)
            values = changes.model_dump(exclude_unset=True)

            row = await self._get_row()
            if row is None:
                row = self._default_row()
                self.db.add(row)

            for field, value in values.items():
                setattr(row, field, value)
            row.updated_at = utcnow()

            await self.db.commit()
            log.info("webhook_settings_updated", fields=sorted(values))
            return True
        except Exception as e:
            log.error("webhook_settings_update_failed", error=str(e))
            await self.db.rollback()
            return False

    async def ensure_settings(self) -> WebhookSettingsSnapshot | None:
        """Create the settings row with defaults if it does not exist yet."""
        try:
            row = await self._get_row()
            if row is None:
                row = self._default_row()
                self.db.add(row)
                await self.db.commit()
                log.info("webhook_settings_provisioned")
            return WebhookSettingsSnapshot.model_validate(row)
        except Exception as e:
            log.error("webhook_settings_provision_failed", error=str(e))
            await self.db.rollback()
            return None

    @staticmethod
    def _default_row() -> WebhookSettings:
        return WebhookSettings(
            id=SETTINGS_ROW_ID,
            enabled=False,
            timeout_seconds=settings.WEBHOOK_DEFAULT_TIMEOUT,
            retry_attempts=settings.WEBHOOK_DEFAULT_MAX_ATTEMPTS,
            retry_delay_seconds=settings.WEBHOOK_DEFAULT_RETRY_DELAY,
            include_customer_data=True,
            include_order_items=True,
            include_pricing_data=True,
            include_shipping_data=True,
        )
