from typing import Any, Optional

from pydantic import BaseModel, ValidationError, field_validator

from app.schemas.chat import WidgetSettings


class ConfigurationError(Exception):
    """Widget cannot be initialized (e.g. no tenant identifier)."""


class WidgetConfig(BaseModel):
    """Embed configuration: required tenant id plus optional display overrides."""

    tenant_id: str
    business_name: Optional[str] = None
    representative_name: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    welcome_message: Optional[str] = None

    @field_validator("tenant_id", mode="before")
    @classmethod
    def _tenant_required(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("tenant_id is required")
        return str(value).strip()

    def apply_overrides(self, settings: WidgetSettings) -> WidgetSettings:
        overrides = self.model_dump(exclude={"tenant_id"}, exclude_none=True)
        return settings.model_copy(update=overrides)


def load_widget_config(raw: Optional[dict]) -> WidgetConfig:
    """Validate the embed config. Raises ConfigurationError before any session starts."""
    if not raw:
        raise ConfigurationError("Widget config is empty: tenant_id is required")
    try:
        return WidgetConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid widget config: {e}") from e
