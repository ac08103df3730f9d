"""Alarm rule definitions (administered externally, read-only here).

site_id NULL means the rule is global and applies to every site.
"""
from __future__ import annotations

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class AlarmRule(TimestampMixin, Base):
    __tablename__ = "alarm_rules"

    __table_args__ = (
        UniqueConstraint("site_id", "code", name="uq_alarm_rules_site_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int | None] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"), default=None
    )
    code: Mapped[str] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(50), default="")
    severity: Mapped[str] = mapped_column(String(20), default="warning")
    trigger_variable: Mapped[str | None] = mapped_column(String(200), default=None)
    trigger_bit: Mapped[int | None] = mapped_column(default=None)
    auto_clear: Mapped[bool] = mapped_column(default=False)
    require_confirmation: Mapped[bool] = mapped_column(default=True)
    is_active: Mapped[bool] = mapped_column(default=True)

    def applies_to(self, site_id: int) -> bool:
        return self.site_id is None or self.site_id == site_id

    def __repr__(self) -> str:
        scope = "global" if self.site_id is None else f"site={self.site_id}"
        return f"<AlarmRule {self.code} ({scope})>"
