from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .capabilities import CapabilityBundle


class RecommendationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    VIEWED = "VIEWED"
    CLICKED = "CLICKED"
    PURCHASED = "PURCHASED"
    DISMISSED = "DISMISSED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RecommendationStatus.PURCHASED, RecommendationStatus.DISMISSED})
LIVE_STATUSES = frozenset(
    {RecommendationStatus.ACTIVE, RecommendationStatus.VIEWED, RecommendationStatus.CLICKED}
)


class InteractionAction(str, Enum):
    VIEW = "view"
    CLICK = "click"
    PURCHASE = "purchase"
    DISMISS = "dismiss"


class RecommendationType(str, Enum):
    SUPPLEMENT = "SUPPLEMENT"
    LAB_RETEST = "LAB_RETEST"
    CLINIC_VISIT = "CLINIC_VISIT"
    SERVICE = "SERVICE"
    ARTICLE = "ARTICLE"


class CompanyType(str, Enum):
    LABORATORY = "LABORATORY"
    PHARMACY = "PHARMACY"
    HEALTH_STORE = "HEALTH_STORE"
    CLINIC = "CLINIC"
    NUTRITIONIST = "NUTRITIONIST"
    FITNESS_CENTER = "FITNESS_CENTER"


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)


@dataclass
class CareRelationship:
    id: str
    caretaker_id: str
    patient_id: str
    permissions: CapabilityBundle
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CareRelationship":
        return cls(
            id=row["id"],
            caretaker_id=row["caretaker_id"],
            patient_id=row["patient_id"],
            permissions=CapabilityBundle.from_json(_load_json(row["permissions_json"], {})),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "caretaker_id": self.caretaker_id,
            "patient_id": self.patient_id,
            "permissions": self.permissions.to_json(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Recommendation:
    id: str
    user_id: str
    type: str
    title: str
    status: RecommendationStatus
    priority: int = 1
    description: str | None = None
    reason: str | None = None
    company_id: str | None = None
    product_id: str | None = None
    analysis_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Recommendation":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"],
            status=RecommendationStatus(row["status"]),
            priority=row["priority"],
            description=row["description"],
            reason=row["reason"],
            company_id=row["company_id"],
            product_id=row["product_id"],
            analysis_id=row["analysis_id"],
            metadata=_load_json(row["metadata_json"], {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "reason": self.reason,
            "priority": self.priority,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "analysis_id": self.analysis_id,
            "status": self.status.value,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RecommendationInteraction:
    id: str
    recommendation_id: str
    action: InteractionAction
    metadata: dict[str, Any] | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RecommendationInteraction":
        return cls(
            id=row["id"],
            recommendation_id=row["recommendation_id"],
            action=InteractionAction(row["action"]),
            metadata=_load_json(row["metadata_json"], None),
            created_at=row["created_at"],
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recommendation_id": self.recommendation_id,
            "action": self.action.value,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class InteractionOutcome:
    interaction: RecommendationInteraction
    previous_status: RecommendationStatus
    new_status: RecommendationStatus

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status

    def as_envelope(self) -> dict[str, Any]:
        return {
            "interaction": self.interaction.as_dict(),
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "changed": self.changed,
        }


@dataclass
class LabIndicator:
    name: str
    value: float
    unit: str | None = None
    reference_min: float | None = None
    reference_max: float | None = None
    is_normal: bool = True

    @property
    def below_range(self) -> bool:
        return self.reference_min is not None and self.value < self.reference_min

    @property
    def above_range(self) -> bool:
        return self.reference_max is not None and self.value > self.reference_max

    def normal_range(self) -> str | None:
        if self.reference_min is None and self.reference_max is None:
            return None
        low = "" if self.reference_min is None else f"{self.reference_min:g}"
        high = "" if self.reference_max is None else f"{self.reference_max:g}"
        return f"{low}-{high}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "reference_min": self.reference_min,
            "reference_max": self.reference_max,
            "is_normal": self.is_normal,
        }


@dataclass
class LabAnalysis:
    id: str
    user_id: str
    title: str
    analysis_type: str
    status: str
    analyzed_at: str
    indicators: list[LabIndicator] = field(default_factory=list)
    created_at: str = ""

    @property
    def abnormal_indicators(self) -> list[LabIndicator]:
        return [indicator for indicator in self.indicators if not indicator.is_normal]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "analysis_type": self.analysis_type,
            "status": self.status,
            "analyzed_at": self.analyzed_at,
            "indicators": [indicator.as_dict() for indicator in self.indicators],
            "created_at": self.created_at,
        }


@dataclass
class Company:
    id: str
    name: str
    company_type: str
    city: str | None = None
    rating: float = 0.0
    is_verified: bool = False
    is_active: bool = True

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Company":
        return cls(
            id=row["id"],
            name=row["name"],
            company_type=row["company_type"],
            city=row["city"],
            rating=row["rating"],
            is_verified=bool(row["is_verified"]),
            is_active=bool(row["is_active"]),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "company_type": self.company_type,
            "city": self.city,
            "rating": self.rating,
            "is_verified": self.is_verified,
            "is_active": self.is_active,
        }
