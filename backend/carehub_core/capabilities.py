"""Delegable capabilities and the fixed-shape permission bundle.

A bundle holds one read/write pair per resource domain. Anything that is not an
explicit ``True`` on the exact ``domain.mode`` path grants nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

DOMAINS = ("diary", "medications", "reminders")


class Capability(str, Enum):
    DIARY_READ = "diary_read"
    DIARY_WRITE = "diary_write"
    MEDICATIONS_READ = "medications_read"
    MEDICATIONS_WRITE = "medications_write"
    REMINDERS_READ = "reminders_read"
    REMINDERS_WRITE = "reminders_write"

    @property
    def domain(self) -> str:
        return self.value.rsplit("_", 1)[0]

    @property
    def mode(self) -> str:
        return self.value.rsplit("_", 1)[1]

    @classmethod
    def parse(cls, value: Any) -> "Capability | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class DomainGrant:
    read: bool = False
    write: bool = False

    @classmethod
    def from_json(cls, raw: Any) -> "DomainGrant":
        if not isinstance(raw, Mapping):
            return cls()
        # Only real booleans count; "true", 1 and friends are treated as absent.
        return cls(read=raw.get("read") is True, write=raw.get("write") is True)

    def to_json(self) -> dict[str, bool]:
        return {"read": self.read, "write": self.write}


@dataclass(frozen=True)
class CapabilityBundle:
    diary: DomainGrant = DomainGrant()
    medications: DomainGrant = DomainGrant()
    reminders: DomainGrant = DomainGrant()

    @classmethod
    def from_json(cls, raw: Any) -> "CapabilityBundle":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(**{domain: DomainGrant.from_json(raw.get(domain)) for domain in DOMAINS})

    @classmethod
    def full(cls) -> "CapabilityBundle":
        grant = DomainGrant(read=True, write=True)
        return cls(diary=grant, medications=grant, reminders=grant)

    @classmethod
    def read_only(cls) -> "CapabilityBundle":
        grant = DomainGrant(read=True)
        return cls(diary=grant, medications=grant, reminders=grant)

    def to_json(self) -> dict[str, dict[str, bool]]:
        return {domain: getattr(self, domain).to_json() for domain in DOMAINS}

    def capabilities(self) -> list[Capability]:
        return [cap for cap in Capability if grants(self, cap)]


def grants(bundle: CapabilityBundle | Mapping[str, Any] | None, capability: Capability | str) -> bool:
    cap = Capability.parse(capability)
    if cap is None or bundle is None:
        return False
    if not isinstance(bundle, CapabilityBundle):
        bundle = CapabilityBundle.from_json(bundle)
    return bool(getattr(getattr(bundle, cap.domain), cap.mode))
