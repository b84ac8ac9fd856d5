"""
NetBill - Referral Settings Service

Typed referral programme settings. Defaults come from application
configuration; rows in system_settings override them key by key.

Loaded snapshots are cached in-process for referral_settings_cache_ttl
seconds. update_settings invalidates the cache directly after its commit.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netbill.config import settings
from netbill.database import unit_of_work
from netbill.models.settings import SystemSetting
from netbill.schemas.settings import ReferralSettingsUpdate
from netbill.utils.error_handling import ErrorCode, ValidationException

logger = logging.getLogger(__name__)


class ReferralSettings(BaseModel):
    """Snapshot of the referral programme configuration."""
    referral_enabled: bool
    referrer_discount_enabled: bool
    referrer_cash_enabled: bool
    referred_installation_discount_enabled: bool
    referrer_discount_fixed: Decimal
    referrer_cash_amount: Decimal
    referred_installation_discount_fixed: Decimal
    marketing_min_fee: Decimal
    marketing_max_fee: Decimal
    referral_code_expiry_days: int
    referral_max_uses: int

    @classmethod
    def defaults(cls) -> "ReferralSettings":
        """Settings taken from application configuration alone."""
        return cls(**{name: getattr(settings, name) for name in cls.model_fields})


def _serialize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ReferralSettingsCache:
    """Single-entry TTL cache for the loaded ReferralSettings."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._value: Optional[ReferralSettings] = None
        self._loaded_at: float = 0.0

    def get(self) -> Optional[ReferralSettings]:
        if self._value is None:
            return None
        if time.monotonic() - self._loaded_at >= self.ttl_seconds:
            self._value = None
            return None
        return self._value

    def set(self, value: ReferralSettings) -> None:
        self._value = value
        self._loaded_at = time.monotonic()

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = 0.0


_settings_cache = ReferralSettingsCache(settings.referral_settings_cache_ttl)


def invalidate_referral_settings_cache() -> None:
    """Drop the cached settings so the next read hits the database."""
    _settings_cache.invalidate()


class ReferralSettingsService:
    """Service for reading and updating referral programme settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_settings(self, use_cache: bool = True) -> ReferralSettings:
        """Get the effective referral settings."""
        if use_cache:
            cached = _settings_cache.get()
            if cached is not None:
                return cached

        keys = list(ReferralSettings.model_fields)
        result = await self.db.execute(
            select(SystemSetting).where(SystemSetting.setting_key.in_(keys))
        )
        overrides = {row.setting_key: row.setting_value for row in result.scalars().all()}

        values = ReferralSettings.defaults().model_dump()
        for key, raw in overrides.items():
            if raw is None:
                continue
            candidate = dict(values, **{key: raw})
            try:
                ReferralSettings.model_validate(candidate)
            except ValidationError:
                logger.warning(f"Ignoring invalid referral setting {key}={raw!r}; using {values[key]!r}")
                continue
            values[key] = raw

        loaded = ReferralSettings.model_validate(values)
        _settings_cache.set(loaded)
        return loaded

    async def update_settings(
        self,
        changes: Union[ReferralSettingsUpdate, Dict[str, Any]],
    ) -> ReferralSettings:
        """
        Validate and persist a partial settings update.

        Unknown keys and out-of-range values raise ValidationException.
        """
        if isinstance(changes, dict):
            unknown = set(changes) - set(ReferralSettingsUpdate.model_fields)
            if unknown:
                raise ValidationException(
                    message=f"Unknown referral setting: {', '.join(sorted(unknown))}",
                    field=sorted(unknown)[0],
                    code=ErrorCode.INVALID_SETTING,
                )
            try:
                changes = ReferralSettingsUpdate.model_validate(changes)
            except ValidationError as e:
                first = e.errors()[0]
                raise ValidationException(
                    message=f"Invalid referral setting: {first['msg']}",
                    field=".".join(str(loc) for loc in first["loc"]) or None,
                    code=ErrorCode.INVALID_SETTING,
                ) from e

        updates = changes.model_dump(exclude_none=True)
        if not updates:
            return await self.get_settings()

        current = await self.get_settings(use_cache=False)
        merged = current.model_copy(update=updates)
        if merged.marketing_min_fee > merged.marketing_max_fee:
            raise ValidationException(
                message="marketing_min_fee must not exceed marketing_max_fee",
                field="marketing_min_fee",
                code=ErrorCode.INVALID_SETTING,
            )

        async with unit_of_work(self.db):
            result = await self.db.execute(
                select(SystemSetting).where(SystemSetting.setting_key.in_(list(updates)))
            )
            existing = {row.setting_key: row for row in result.scalars().all()}

            for key, value in updates.items():
                row = existing.get(key)
                if row is None:
                    self.db.add(SystemSetting(
                        setting_key=key,
                        setting_value=_serialize(value),
                        description=f"Referral setting {key}",
                    ))
                else:
                    row.setting_value = _serialize(value)

        invalidate_referral_settings_cache()
        logger.info(f"Referral settings updated: {', '.join(sorted(updates))}")
        return await self.get_settings()
