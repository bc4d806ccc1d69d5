"""
SettingsService -- runtime overrides for the stock policy.

Responsibility:
    Overlays rows of ``runtime_settings`` on a defaults ``StockPolicy`` and
    returns a fresh snapshot.  Called at the start of every boundary
    operation so a changed switch takes effect on the next request without
    a restart.

Failure modes:
    - ValueError on an unknown key or an unparseable stored value.
"""

from dataclasses import replace
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.logging_config import get_logger
from ppe_kernel.models.setting import RuntimeSetting

logger = get_logger("services.settings")

ALLOW_NEGATIVE_STOCK = "allow_negative_stock"
ALLOW_FORCED_ADJUSTMENTS = "allow_forced_adjustments"
RETURN_CANCELLATION_WINDOW_HOURS = "return_cancellation_window_hours"
DELIVERY_CANCELLATION_WINDOW_HOURS = "delivery_cancellation_window_hours"

_BOOL_KEYS = frozenset({ALLOW_NEGATIVE_STOCK, ALLOW_FORCED_ADJUSTMENTS})
_INT_KEYS = frozenset({RETURN_CANCELLATION_WINDOW_HOURS, DELIVERY_CANCELLATION_WINDOW_HOURS})
KNOWN_KEYS = _BOOL_KEYS | _INT_KEYS

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def parse_bool(raw: str | bool) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"Not a boolean setting value: {raw!r}")


def parse_setting(key: str, raw: str | bool | int) -> bool | int:
    if key in _BOOL_KEYS:
        return parse_bool(raw)
    if key in _INT_KEYS:
        value = int(raw)
        if value < 0:
            raise ValueError(f"Setting {key} must be >= 0, got {value}")
        return value
    raise ValueError(f"Unknown setting: {key}")


class SettingsService:
    """Reads and writes runtime policy overrides (flush only)."""

    def __init__(self, session: Session):
        self._session = session

    def resolve(self, defaults: StockPolicy) -> StockPolicy:
        rows = self._session.execute(
            select(RuntimeSetting.key, RuntimeSetting.value)
        ).all()
        overrides = {key: parse_setting(key, value) for key, value in rows if key in KNOWN_KEYS}
        return replace(defaults, **overrides) if overrides else defaults

    def set_setting(
        self,
        key: str,
        value: str | bool | int,
        actor_id: UUID,
        description: str | None = None,
    ) -> RuntimeSetting:
        parsed = parse_setting(key, value)
        stored = str(parsed).lower() if isinstance(parsed, bool) else str(parsed)

        row = self._session.execute(
            select(RuntimeSetting).where(RuntimeSetting.key == key).with_for_update()
        ).scalar_one_or_none()
        if row is None:
            row = RuntimeSetting(
                key=key,
                value=stored,
                description=description,
                created_by_id=actor_id,
            )
            self._session.add(row)
        else:
            row.value = stored
            row.updated_by_id = actor_id
            if description is not None:
                row.description = description
        self._session.flush()

        logger.info(
            "runtime_setting_changed",
            extra={"setting_key": key, "setting_value": stored, "actor_id": str(actor_id)},
        )
        return row
