from __future__ import annotations

from .care_store import CareStore
from .database import SQLiteHealthDB
from .lab_store import LabStore
from .marketplace_store import CompanyStore
from .records_store import PatientRecordsStore
from .recommendation_store import RecommendationStore


class HealthStore:
    def __init__(self, db: SQLiteHealthDB) -> None:
        self.db = db
        self.care = CareStore(db)
        self.labs = LabStore(db)
        self.companies = CompanyStore(db)
        self.records = PatientRecordsStore(db)
        self.recommendations = RecommendationStore(db)
