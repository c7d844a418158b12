from __future__ import annotations

import logging

import pytest

from carehub_core.access import AccessResolver
from carehub_core.capabilities import Capability
from carehub_core.errors import ForbiddenError
from lab_fixtures import permissions


@pytest.fixture
def resolver(store) -> AccessResolver:
    return AccessResolver(store.care)


@pytest.mark.parametrize("requested", [None, "", "   ", "patient-1", " patient-1 "])
@pytest.mark.parametrize("capability", list(Capability))
def test_self_access_is_always_allowed(resolver, requested, capability):
    decision = resolver.resolve_patient_id("patient-1", requested, capability)

    assert decision.allowed is True
    assert decision.patient_id == "patient-1"
    assert decision.code == "self"


def test_no_relationship_is_denied(resolver):
    decision = resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_READ)

    assert decision.allowed is False
    assert decision.patient_id is None
    assert decision.code == "no_delegation"
    with pytest.raises(ForbiddenError) as excinfo:
        decision.raise_for_denied()
    assert excinfo.value.code == "no_delegation"


def test_diary_read_only_caretaker(store, resolver):
    store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions=permissions(diary="r"),
    )

    assert resolver.require("caretaker-1", "patient-1", Capability.DIARY_READ) == "patient-1"

    denied = resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_WRITE)
    assert denied.allowed is False
    assert denied.code == "capability_not_granted"
    for capability in (Capability.MEDICATIONS_READ, Capability.REMINDERS_WRITE):
        assert resolver.resolve_patient_id("caretaker-1", "patient-1", capability).allowed is False


def test_delegation_is_directional(store, resolver):
    store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions=permissions(diary="rw", medications="rw", reminders="rw"),
    )

    decision = resolver.resolve_patient_id("patient-1", "caretaker-1", Capability.DIARY_READ)
    assert decision.allowed is False
    assert decision.code == "no_delegation"


def test_regrant_replaces_permissions(store, resolver):
    first = store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions=permissions(medications="rw"),
    )
    second = store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions=permissions(diary="r"),
    )

    assert first["id"] == second["id"]
    assert resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.MEDICATIONS_WRITE).allowed is False
    assert resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_READ).allowed is True


def test_revoked_relationship_is_denied(store, resolver):
    row = store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions=permissions(diary="r"),
    )
    assert store.care.delete(row["id"]) is True

    assert resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_READ).code == "no_delegation"


def test_non_boolean_flags_in_storage_deny(store, resolver):
    store.care.upsert_relationship(
        caretaker_id="caretaker-1",
        patient_id="patient-1",
        permissions={"diary": {"read": "yes", "write": 1}},
    )

    assert resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_READ).allowed is False
    assert resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.DIARY_WRITE).allowed is False


def test_denials_are_logged(resolver, caplog):
    caplog.set_level(logging.INFO, logger="carehub_core.access")

    resolver.resolve_patient_id("caretaker-1", "patient-1", Capability.REMINDERS_READ)

    assert "caller=caretaker-1 patient=patient-1 capability=reminders_read reason=no_delegation" in caplog.text
