from .access import AccessDecision, AccessResolver
from .capabilities import Capability, CapabilityBundle, DomainGrant, grants
from .errors import (
    CareHubError,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidActionError,
    InvalidFilterError,
    InvalidMetadataError,
    NotFoundError,
    UnauthenticatedError,
)
from .generator import RecommendationGenerator
from .lifecycle import RecommendationLifecycle
from .models import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    CareRelationship,
    InteractionAction,
    InteractionOutcome,
    Recommendation,
    RecommendationInteraction,
    RecommendationStatus,
    RecommendationType,
)
from .service import RecommendationService

__all__ = [
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "AccessDecision",
    "AccessResolver",
    "Capability",
    "CapabilityBundle",
    "CareHubError",
    "CareRelationship",
    "ConflictError",
    "DomainGrant",
    "ForbiddenError",
    "InteractionAction",
    "InteractionOutcome",
    "InternalError",
    "InvalidActionError",
    "InvalidFilterError",
    "InvalidMetadataError",
    "NotFoundError",
    "Recommendation",
    "RecommendationGenerator",
    "RecommendationInteraction",
    "RecommendationLifecycle",
    "RecommendationService",
    "RecommendationStatus",
    "RecommendationType",
    "UnauthenticatedError",
    "grants",
]
