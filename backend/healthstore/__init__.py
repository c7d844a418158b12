from .care_store import CareStore
from .database import LIVE_STATUSES, SQLiteHealthDB
from .lab_store import LabStore
from .marketplace_store import CompanyStore
from .records_store import PatientRecordsStore
from .recommendation_store import RecommendationStore
from .service import HealthStore

__all__ = [
    "LIVE_STATUSES",
    "CareStore",
    "CompanyStore",
    "HealthStore",
    "LabStore",
    "PatientRecordsStore",
    "RecommendationStore",
    "SQLiteHealthDB",
]
