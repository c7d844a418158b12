from __future__ import annotations

import pytest

from carehub_core.capabilities import Capability, CapabilityBundle, DomainGrant, grants


def test_capability_exposes_domain_and_mode():
    assert Capability.MEDICATIONS_WRITE.domain == "medications"
    assert Capability.MEDICATIONS_WRITE.mode == "write"
    assert [cap.value for cap in Capability] == [
        "diary_read",
        "diary_write",
        "medications_read",
        "medications_write",
        "reminders_read",
        "reminders_write",
    ]


@pytest.mark.parametrize(
    "raw",
    [
        None,
        {},
        {"diary": None},
        {"diary": {}},
        {"diary": {"read": "true"}},
        {"diary": {"read": 1}},
        {"diary": ["read"]},
        "diary_read",
        {"Diary": {"read": True}},
    ],
)
def test_missing_or_malformed_flags_grant_nothing(raw):
    assert grants(raw, Capability.DIARY_READ) is False


def test_exact_flag_is_required():
    bundle = {"diary": {"read": True, "write": False}, "medications": {"write": True}}

    assert grants(bundle, Capability.DIARY_READ) is True
    assert grants(bundle, Capability.DIARY_WRITE) is False
    assert grants(bundle, Capability.MEDICATIONS_WRITE) is True
    assert grants(bundle, Capability.MEDICATIONS_READ) is False
    assert grants(bundle, Capability.REMINDERS_READ) is False


def test_unknown_capability_is_denied_without_raising():
    assert grants(CapabilityBundle.full(), "lab_results_read") is False
    assert grants(CapabilityBundle.full(), None) is False
    assert grants(CapabilityBundle.full(), " Diary_Read ") is True


def test_bundle_round_trips_persisted_shape_and_drops_unknown_domains():
    decoded = CapabilityBundle.from_json(
        {"diary": {"read": True, "write": True}, "labs": {"read": True}, "reminders": {"read": True, "extra": 1}}
    )

    assert decoded.to_json() == {
        "diary": {"read": True, "write": True},
        "medications": {"read": False, "write": False},
        "reminders": {"read": True, "write": False},
    }
    assert decoded.capabilities() == [
        Capability.DIARY_READ,
        Capability.DIARY_WRITE,
        Capability.REMINDERS_READ,
    ]


def test_bundle_helpers():
    assert set(CapabilityBundle.full().capabilities()) == set(Capability)
    assert all(cap.mode == "read" for cap in CapabilityBundle.read_only().capabilities())
    assert CapabilityBundle() == CapabilityBundle(DomainGrant(), DomainGrant(), DomainGrant())
