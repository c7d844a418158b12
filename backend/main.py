from __future__ import annotations

import hashlib
import logging
import os
import re
import sqlite3
from pathlib import Path
from typing import Any, NoReturn

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from carehub_core import (
    AccessResolver,
    Capability,
    CapabilityBundle,
    CareHubError,
    CareRelationship,
    InternalError,
    RecommendationGenerator,
    RecommendationLifecycle,
    RecommendationService,
    UnauthenticatedError,
)
from carehub_core.models import Company, CompanyType
from healthstore import HealthStore, SQLiteHealthDB

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


def _configure_logging() -> None:
    level = os.getenv("CAREHUB_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


_bootstrap_local_env()
_configure_logging()
logger = logging.getLogger("carehub.api")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("ignoring non-integer %s; using %d", name, default)
        return default


class PermissionsPayload(BaseModel):
    diary: dict[str, Any] | None = None
    medications: dict[str, Any] | None = None
    reminders: dict[str, Any] | None = None


class CareLinkCreatePayload(BaseModel):
    caretaker_id: str = Field(min_length=1, max_length=64)
    permissions: PermissionsPayload | None = None


class CareLinkUpdatePayload(BaseModel):
    permissions: PermissionsPayload


class DiaryEntryPayload(BaseModel):
    patient_id: str | None = None
    entry_date: str | None = None
    mood: int | None = Field(default=None, ge=1, le=10)
    pain_score: int | None = Field(default=None, ge=0, le=10)
    notes: str | None = Field(default=None, max_length=4000)


class MedicationPayload(BaseModel):
    patient_id: str | None = None
    name: str = Field(min_length=1, max_length=200)
    dosage: str | None = None
    frequency_per_day: int | None = None
    is_supplement: bool = False
    notes: str | None = None


class ReminderPayload(BaseModel):
    patient_id: str | None = None
    title: str = Field(min_length=1, max_length=200)
    remind_at: str
    notes: str | None = None


class LabIndicatorPayload(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    value: float = Field(allow_inf_nan=False)
    unit: str | None = None
    reference_min: float | None = Field(default=None, allow_inf_nan=False)
    reference_max: float | None = Field(default=None, allow_inf_nan=False)
    is_normal: bool | None = None


class LabAnalysisPayload(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    analysis_type: str = "blood"
    analyzed_at: str | None = None
    indicators: list[LabIndicatorPayload] = Field(default_factory=list)


class InteractionPayload(BaseModel):
    action: str
    metadata: dict[str, Any] | None = None


class CareHubApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "CAREHUB_DB_PATH",
            str((Path(__file__).resolve().parent / "carehub.sqlite")),
        )
        self.db = SQLiteHealthDB(db_path)
        self.store = HealthStore(self.db)
        self.resolver = AccessResolver(self.store.care)
        self.generator = RecommendationGenerator(
            labs=self.store.labs,
            companies=self.store.companies,
            recommendations=self.store.recommendations,
            recent_analyses=_env_int("CAREHUB_RECENT_ANALYSES", 5),
        )
        self.lifecycle = RecommendationLifecycle(self.db, max_attempts=_env_int("CAREHUB_STATUS_RETRIES", 3))
        self.recommendations = RecommendationService(
            self.store.recommendations,
            self.generator,
            auto_materialize=_env_flag("CAREHUB_AUTO_MATERIALIZE", "true"),
        )


container = CareHubApp()
app = FastAPI(title="CareHub Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _raise_http(exc: CareHubError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.as_detail()) from exc


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        if _env_flag("ALLOW_ANON"):
            return "demo-user"
        _raise_http(UnauthenticatedError("Missing Authorization"))
    # Bearer token is opaque here; verification belongs to the upstream gateway.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _role(x_user_role: str | None) -> str | None:
    role = (x_user_role or "").strip().lower()
    return role or None


def _patient_for(caller_id: str, patient_id: str | None, capability: Capability) -> str:
    try:
        return container.resolver.require(caller_id, patient_id, capability)
    except CareHubError as exc:
        _raise_http(exc)


def _bundle_from_payload(payload: PermissionsPayload | None) -> CapabilityBundle:
    if payload is None:
        return CapabilityBundle.read_only()
    return CapabilityBundle.from_json(payload.model_dump(exclude_none=True))


def _link_for_party(link_id: str, user_id: str) -> CareRelationship:
    row = container.store.care.get(link_id)
    if not row or user_id not in {row["caretaker_id"], row["patient_id"]}:
        raise HTTPException(status_code=404, detail="Care link not found")
    return CareRelationship.from_row(row)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/caretaker/links")
def list_care_links(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    return {
        "as_caretaker": [
            CareRelationship.from_row(row).as_dict() for row in container.store.care.list_as_caretaker(user_id)
        ],
        "as_patient": [
            CareRelationship.from_row(row).as_dict() for row in container.store.care.list_as_patient(user_id)
        ],
    }


@app.post("/caretaker/links")
def grant_care_link(
    payload: CareLinkCreatePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    role = _role(x_user_role)
    if role is not None and role != "patient":
        raise HTTPException(status_code=403, detail="Only patients can grant caretaker access")
    caretaker_id = _validated_trusted_user_id(payload.caretaker_id)
    if caretaker_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot delegate access to yourself")
    bundle = _bundle_from_payload(payload.permissions)
    row = container.store.care.upsert_relationship(
        caretaker_id=caretaker_id,
        patient_id=user_id,
        permissions=bundle.to_json(),
    )
    logger.info("care link %s granted by %s to %s", row["id"], user_id, caretaker_id)
    return CareRelationship.from_row(row).as_dict()


@app.patch("/caretaker/links/{link_id}")
def update_care_link(
    link_id: str,
    payload: CareLinkUpdatePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    link = _link_for_party(link_id, user_id)
    if link.patient_id != user_id:
        raise HTTPException(status_code=403, detail="Only the patient can change permissions")
    row = container.store.care.update_permissions(link_id, _bundle_from_payload(payload.permissions).to_json())
    if not row:
        raise HTTPException(status_code=404, detail="Care link not found")
    return CareRelationship.from_row(row).as_dict()


@app.delete("/caretaker/links/{link_id}")
def revoke_care_link(
    link_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _link_for_party(link_id, user_id)
    if not container.store.care.delete(link_id):
        raise HTTPException(status_code=404, detail="Care link not found")
    logger.info("care link %s revoked by %s", link_id, user_id)
    return {"ok": True}


@app.get("/diary/entries")
def list_diary_entries(
    patient_id: str | None = None,
    limit: int = 50,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, patient_id, Capability.DIARY_READ)
    return {"patient_id": target, "items": container.store.records.list_diary_entries(target, limit)}


@app.post("/diary/entries")
def add_diary_entry(
    payload: DiaryEntryPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, payload.patient_id, Capability.DIARY_WRITE)
    return container.store.records.add_diary_entry(
        user_id=target,
        created_by=user_id,
        entry_date=payload.entry_date,
        mood=payload.mood,
        pain_score=payload.pain_score,
        notes=payload.notes,
    )


@app.get("/medications")
def list_medications(
    patient_id: str | None = None,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, patient_id, Capability.MEDICATIONS_READ)
    return {"patient_id": target, "items": container.store.records.list_medications(target)}


@app.post("/medications")
def add_medication(
    payload: MedicationPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, payload.patient_id, Capability.MEDICATIONS_WRITE)
    return container.store.records.add_medication(
        user_id=target,
        created_by=user_id,
        name=payload.name,
        dosage=payload.dosage,
        frequency_per_day=payload.frequency_per_day,
        is_supplement=payload.is_supplement,
        notes=payload.notes,
    )


@app.get("/reminders")
def list_reminders(
    patient_id: str | None = None,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, patient_id, Capability.REMINDERS_READ)
    return {"patient_id": target, "items": container.store.records.list_reminders(target)}


@app.post("/reminders")
def add_reminder(
    payload: ReminderPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    target = _patient_for(user_id, payload.patient_id, Capability.REMINDERS_WRITE)
    return container.store.records.add_reminder(
        user_id=target,
        created_by=user_id,
        title=payload.title,
        remind_at=payload.remind_at,
        notes=payload.notes,
    )


@app.get("/analyses")
def list_analyses(
    limit: int = 20,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return {"items": container.store.labs.recent_analyses(user_id, limit)}


@app.post("/analyses")
def record_analysis(
    payload: LabAnalysisPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        analysis = container.store.labs.record_analysis(
            user_id=user_id,
            title=payload.title,
            analysis_type=payload.analysis_type,
            indicators=[indicator.model_dump() for indicator in payload.indicators],
            analyzed_at=payload.analyzed_at,
        )
    except sqlite3.Error:
        logger.exception("failed to record analysis for %s", user_id)
        _raise_http(InternalError("Storage failure while recording the analysis."))
    try:
        created = container.recommendations.generate(user_id)
    except CareHubError as exc:
        _raise_http(exc)
    return {"analysis": analysis, "recommendations_created": created}


@app.get("/marketplace/companies")
def list_companies(
    company_type: str | None = None,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    wanted = None
    if company_type:
        try:
            wanted = CompanyType(company_type.strip().upper()).value
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown company type: {company_type}") from None
    rows = container.store.companies.list_companies(wanted)
    return {"items": [Company.from_row(row).as_dict() for row in rows]}


@app.get("/recommendations")
def list_recommendations(
    status: str | None = None,
    type: str | None = None,
    limit: int = 20,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        items = container.recommendations.list_for_patient(user_id, status=status, rec_type=type, limit=limit)
    except CareHubError as exc:
        _raise_http(exc)
    return {"items": items}


@app.post("/recommendations/generate")
def generate_recommendations(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        created = container.recommendations.generate(user_id)
    except CareHubError as exc:
        _raise_http(exc)
    return {"created": created, "count": len(created)}


@app.get("/recommendations/{recommendation_id}")
def get_recommendation(
    recommendation_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        return container.recommendations.get_for_patient(recommendation_id, user_id)
    except CareHubError as exc:
        _raise_http(exc)


@app.post("/recommendations/{recommendation_id}/interact")
def interact_with_recommendation(
    recommendation_id: str,
    payload: InteractionPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        outcome = container.lifecycle.record_interaction(
            recommendation_id,
            user_id,
            payload.action,
            payload.metadata,
        )
    except CareHubError as exc:
        _raise_http(exc)
    return outcome.as_envelope()


@app.get("/recommendations/{recommendation_id}/interactions")
def list_recommendation_interactions(
    recommendation_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        interactions = container.lifecycle.list_interactions(recommendation_id, user_id)
    except CareHubError as exc:
        _raise_http(exc)
    return {"items": [interaction.as_dict() for interaction in interactions]}


@app.delete("/admin/recommendations/{recommendation_id}")
def purge_recommendation(
    recommendation_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    if _role(x_user_role) != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    try:
        container.recommendations.purge_recommendation(recommendation_id)
    except CareHubError as exc:
        _raise_http(exc)
    logger.info("admin %s purged recommendation %s", user_id, recommendation_id)
    return {"ok": True}
