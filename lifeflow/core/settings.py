from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import tzinfo
from typing import Any, Mapping

from lifeflow.core.day_key import DEFAULT_ROLLOVER_HOUR, resolve_timezone, validate_rollover_hour
from lifeflow.core.errors import InvalidSettingError


@dataclass(frozen=True)
class EngineSettings:
    rollover_hour: int = DEFAULT_ROLLOVER_HOUR
    timezone: str = "local"
    auto_start_breaks: bool = True
    auto_start_work: bool = False
    last_pomodoro_config_id: str | None = None

    def __post_init__(self) -> None:
        validate_rollover_hour(self.rollover_hour)
        resolve_timezone(self.timezone)
        for key in ("auto_start_breaks", "auto_start_work"):
            if not isinstance(getattr(self, key), bool):
                raise InvalidSettingError(key, getattr(self, key), "must be true or false")

    @property
    def tzinfo(self) -> tzinfo | None:
        return resolve_timezone(self.timezone)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> EngineSettings:
        """Builds settings from a stored dict, ignoring keys this version doesn't know."""
        known = {field.name for field in fields(cls)}
        return cls(**{key: value for key, value in (raw or {}).items() if key in known})

    def updated(self, **changes: Any) -> EngineSettings:
        known = {field.name for field in fields(self)}
        for key in changes:
            if key not in known:
                raise InvalidSettingError(key, changes[key], "unknown setting")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
