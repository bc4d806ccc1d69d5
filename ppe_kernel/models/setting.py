"""
Module: ppe_kernel.models.setting
Responsibility: Runtime-editable settings (negative stock, forced
    adjustments, grace windows).  Rows override file defaults and are
    re-read at the start of every operation.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ppe_kernel.db.base import TrackedBase


class RuntimeSetting(TrackedBase):
    """One key/value override, stored as text."""

    __tablename__ = "runtime_settings"

    __table_args__ = (
        UniqueConstraint("key", name="uq_runtime_setting_key"),
    )

    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<RuntimeSetting {self.key}={self.value}>"
