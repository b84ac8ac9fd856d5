"""
NetBill - System Settings Model

Key/value runtime settings. The referral programme reads its overrides
from here; keys match the ReferralSettings field names.
"""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from netbill.models.base import BaseModel


class SystemSetting(BaseModel):
    """One runtime setting stored as text."""

    __tablename__ = "system_settings"

    setting_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
    )
    setting_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SystemSetting({self.setting_key}={self.setting_value!r})>"
