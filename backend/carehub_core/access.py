from __future__ import annotations

import logging
from dataclasses import dataclass

from healthstore.care_store import CareStore

from .capabilities import Capability, grants
from .errors import ForbiddenError
from .models import CareRelationship

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    patient_id: str | None
    code: str
    message: str

    def raise_for_denied(self) -> str:
        if not self.allowed or self.patient_id is None:
            raise ForbiddenError(self.message, code=self.code)
        return self.patient_id


class AccessResolver:
    """Decides whose data a caller may touch under a given capability.

    Every patient-scoped read or write goes through ``resolve_patient_id``; the
    caller's own id is always allowed, anyone else's requires a care
    relationship whose bundle carries the exact capability.
    """

    def __init__(self, care: CareStore) -> None:
        self._care = care

    def resolve_patient_id(
        self,
        caller_id: str,
        requested_patient_id: str | None,
        capability: Capability | str,
    ) -> AccessDecision:
        requested = (requested_patient_id or "").strip()
        cap_name = getattr(capability, "value", capability)
        if not requested or requested == caller_id:
            return AccessDecision(True, caller_id, "self", "allowed")

        row = self._care.get_by_pair(caller_id, requested)
        if row is None:
            logger.info("access denied: caller=%s patient=%s capability=%s reason=no_delegation",
                        caller_id, requested, cap_name)
            return AccessDecision(False, None, "no_delegation", "no delegation")

        relationship = CareRelationship.from_row(row)
        if not grants(relationship.permissions, capability):
            logger.info("access denied: caller=%s patient=%s capability=%s reason=capability_not_granted",
                        caller_id, requested, cap_name)
            return AccessDecision(False, None, "capability_not_granted", "capability not granted")

        return AccessDecision(True, requested, "delegated", "allowed")

    def require(self, caller_id: str, requested_patient_id: str | None, capability: Capability | str) -> str:
        return self.resolve_patient_id(caller_id, requested_patient_id, capability).raise_for_denied()
