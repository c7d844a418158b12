from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidMetadataError
from .models import InteractionAction


class _ActionMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ViewMetadata(_ActionMetadata):
    source: str | None = Field(default=None, max_length=64)
    duration_seconds: float | None = Field(default=None, ge=0)


class ClickMetadata(_ActionMetadata):
    source: str | None = Field(default=None, max_length=64)
    target_url: str | None = Field(default=None, max_length=2048)


class PurchaseMetadata(_ActionMetadata):
    order_id: str | None = Field(default=None, max_length=128)
    product_id: str | None = Field(default=None, max_length=128)
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, pattern=r"^[A-Z]{3}$")


class DismissMetadata(_ActionMetadata):
    reason: str | None = Field(default=None, max_length=500)


METADATA_SCHEMAS: dict[InteractionAction, type[_ActionMetadata]] = {
    InteractionAction.VIEW: ViewMetadata,
    InteractionAction.CLICK: ClickMetadata,
    InteractionAction.PURCHASE: PurchaseMetadata,
    InteractionAction.DISMISS: DismissMetadata,
}


def parse_interaction_metadata(action: InteractionAction, raw: Any) -> dict[str, Any] | None:
    """Validate ``raw`` against the schema for ``action``; empty input yields None."""
    if raw is None or raw == {}:
        return None
    if not isinstance(raw, dict):
        raise InvalidMetadataError(f"Metadata for '{action.value}' must be an object.")
    try:
        parsed = METADATA_SCHEMAS[action].model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'metadata'}: {error['msg']}" for error in exc.errors()
        )
        raise InvalidMetadataError(f"Invalid metadata for '{action.value}': {problems}") from exc
    return parsed.model_dump(exclude_none=True) or None
