from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

LIVE_STATUSES = ("ACTIVE", "VIEWED", "CLICKED")


class SQLiteHealthDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS care_relationships (
                  id TEXT PRIMARY KEY,
                  caretaker_id TEXT NOT NULL,
                  patient_id TEXT NOT NULL,
                  permissions_json TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  UNIQUE(caretaker_id, patient_id),
                  CHECK (caretaker_id <> patient_id)
                );

                CREATE TABLE IF NOT EXISTS companies (
                  id TEXT PRIMARY KEY,
                  name TEXT NOT NULL,
                  company_type TEXT NOT NULL,
                  city TEXT,
                  rating REAL NOT NULL DEFAULT 0,
                  is_verified INTEGER NOT NULL DEFAULT 0,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS lab_analyses (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  title TEXT NOT NULL,
                  analysis_type TEXT NOT NULL,
                  status TEXT NOT NULL CHECK (status IN ('normal', 'abnormal')),
                  analyzed_at TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS lab_indicators (
                  id TEXT PRIMARY KEY,
                  analysis_id TEXT NOT NULL REFERENCES lab_analyses(id) ON DELETE CASCADE,
                  position INTEGER NOT NULL,
                  name TEXT NOT NULL,
                  value REAL NOT NULL,
                  unit TEXT,
                  reference_min REAL,
                  reference_max REAL,
                  is_normal INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS diary_entries (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  entry_date TEXT NOT NULL,
                  mood INTEGER,
                  pain_score INTEGER,
                  notes TEXT,
                  created_by TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS medications (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  name TEXT NOT NULL,
                  dosage TEXT,
                  frequency_per_day INTEGER,
                  is_supplement INTEGER NOT NULL DEFAULT 0,
                  notes TEXT,
                  created_by TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reminders (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  title TEXT NOT NULL,
                  remind_at TEXT NOT NULL,
                  notes TEXT,
                  created_by TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS recommendations (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  type TEXT NOT NULL,
                  title TEXT NOT NULL,
                  description TEXT,
                  reason TEXT,
                  priority INTEGER NOT NULL DEFAULT 1,
                  company_id TEXT REFERENCES companies(id) ON DELETE SET NULL,
                  product_id TEXT,
                  analysis_id TEXT REFERENCES lab_analyses(id) ON DELETE SET NULL,
                  status TEXT NOT NULL DEFAULT 'ACTIVE'
                    CHECK (status IN ('ACTIVE', 'VIEWED', 'CLICKED', 'PURCHASED', 'DISMISSED')),
                  metadata_json TEXT NOT NULL DEFAULT '{}',
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS recommendation_interactions (
                  id TEXT PRIMARY KEY,
                  recommendation_id TEXT NOT NULL REFERENCES recommendations(id) ON DELETE CASCADE,
                  action TEXT NOT NULL CHECK (action IN ('view', 'click', 'purchase', 'dismiss')),
                  metadata_json TEXT,
                  created_at TEXT NOT NULL
                );

                CREATE TRIGGER IF NOT EXISTS trg_recommendation_interactions_append_only
                BEFORE UPDATE ON recommendation_interactions
                BEGIN
                  SELECT RAISE(ABORT, 'recommendation_interactions is append-only');
                END;

                CREATE UNIQUE INDEX IF NOT EXISTS uq_recommendations_live_key
                  ON recommendations(user_id, type, title, ifnull(company_id, ''))
                  WHERE status IN ('ACTIVE', 'VIEWED', 'CLICKED');
                CREATE INDEX IF NOT EXISTS idx_recommendations_user_status
                  ON recommendations(user_id, status);
                CREATE INDEX IF NOT EXISTS idx_interactions_recommendation_time
                  ON recommendation_interactions(recommendation_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_care_relationships_patient
                  ON care_relationships(patient_id);
                CREATE INDEX IF NOT EXISTS idx_lab_analyses_user_time
                  ON lab_analyses(user_id, analyzed_at DESC);
                CREATE INDEX IF NOT EXISTS idx_lab_indicators_analysis
                  ON lab_indicators(analysis_id, position);
                CREATE INDEX IF NOT EXISTS idx_companies_type_active
                  ON companies(company_type, is_active);
                CREATE INDEX IF NOT EXISTS idx_diary_entries_user_date
                  ON diary_entries(user_id, entry_date DESC);
                CREATE INDEX IF NOT EXISTS idx_medications_user
                  ON medications(user_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_reminders_user_time
                  ON reminders(user_id, remind_at);
                """
            )
