"""
Record store abstraction for Supabase Postgres and an in-memory test implementation.

Stores speak in column names (``image_src``, ``github_link``...). Translating
to and from the public field names is the services' job.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import Column, DateTime, Integer, String, create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

PROJECTS_TABLE = "proyectos"
PRESENTER_TABLE = "presentador"


# Key of the presenter row; concurrent first inserts collide on it.
PRESENTER_SINGLETON_ID = 1

CreateCheck = Callable[[dict], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore(Protocol):
    """Interface for record-store access."""

    def list_projects(self) -> list[dict]:
        ...

    def get_project(self, project_id: int) -> Optional[dict]:
        ...

    def insert_project(self, values: dict) -> dict:
        ...

    def update_project(self, project_id: int, values: dict) -> Optional[dict]:
        ...

    def delete_project(self, project_id: int) -> Optional[dict]:
        ...

    def get_presenter(self) -> Optional[dict]:
        ...

    def upsert_presenter(
        self, values: dict, on_create: Optional[CreateCheck] = None
    ) -> dict:
        """
        Merge ``values`` into the single presenter row, creating it if absent.

        Lookup and write are atomic. ``on_create`` runs before a new row is
        written and may raise to abort the insert.
        """
        ...


class InMemoryRecordStore:
    """Simple in-memory record store for development and tests."""

    def __init__(self):
        self.projects: Dict[int, dict] = {}
        self.presenters: Dict[int, dict] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.projects.clear()
            self.presenters.clear()
            self._ids = itertools.count(1)

    def list_projects(self) -> list[dict]:
        return [dict(row) for _, row in sorted(self.projects.items())]

    def get_project(self, project_id: int) -> Optional[dict]:
        row = self.projects.get(project_id)
        return dict(row) if row else None

    def insert_project(self, values: dict) -> dict:
        with self._lock:
            project_id = next(self._ids)
            row = {
                "id": project_id,
                "image_src": None,
                "title": None,
                "description": None,
                "github_link": None,
                "live_demo_link": None,
                "tech_section": None,
                "created_at": _utcnow(),
            }
            row.update(values)
            self.projects[project_id] = row
            return dict(row)

    def update_project(self, project_id: int, values: dict) -> Optional[dict]:
        with self._lock:
            row = self.projects.get(project_id)
            if row is None:
                return None
            row.update(values)
            return dict(row)

    def delete_project(self, project_id: int) -> Optional[dict]:
        with self._lock:
            row = self.projects.pop(project_id, None)
            return dict(row) if row else None

    def _first_presenter(self) -> Optional[dict]:
        if not self.presenters:
            return None
        return self.presenters[min(self.presenters)]

    def get_presenter(self) -> Optional[dict]:
        with self._lock:
            row = self._first_presenter()
            return dict(row) if row else None

    def upsert_presenter(
        self, values: dict, on_create: Optional[CreateCheck] = None
    ) -> dict:
        with self._lock:
            row = self._first_presenter()
            if row is None:
                if on_create is not None:
                    on_create(values)
                row = {
                    "id": PRESENTER_SINGLETON_ID,
                    "nombre": None,
                    "perfil_url": None,
                    "about_me_description": None,
                    "contact_email": None,
                }
                self.presenters[PRESENTER_SINGLETON_ID] = row
            row.update(values)
            row["updated_at"] = _utcnow()
            return dict(row)


class SqlRecordStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (Supabase
    Postgres in production, SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlRecordStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _as_dict(row: Base) -> dict:
        return {column.name: getattr(row, column.name) for column in row.__table__.columns}

    def list_projects(self) -> list[dict]:
        with self.Session() as session:
            rows = session.execute(select(ProjectRow).order_by(ProjectRow.id.asc()))
            return [self._as_dict(row) for row in rows.scalars()]

    def get_project(self, project_id: int) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            return self._as_dict(row) if row else None

    def insert_project(self, values: dict) -> dict:
        with self.Session() as session:
            row = ProjectRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._as_dict(row)

    def update_project(self, project_id: int, values: dict) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            if not row:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._as_dict(row)

    def delete_project(self, project_id: int) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            if not row:
                return None
            deleted = self._as_dict(row)
            session.delete(row)
            session.commit()
            return deleted

    def get_presenter(self) -> Optional[dict]:
        with self.Session() as session:
            stmt = select(PresenterRow).order_by(PresenterRow.id.asc()).limit(1)
            row = session.execute(stmt).scalar_one_or_none()
            return self._as_dict(row) if row else None

    def upsert_presenter(
        self, values: dict, on_create: Optional[CreateCheck] = None
    ) -> dict:
        try:
            return self._write_presenter(values, on_create)
        except IntegrityError:
            # Lost the race to insert the singleton key; the row exists now.
            return self._write_presenter(values, on_create)

    def _write_presenter(self, values: dict, on_create: Optional[CreateCheck]) -> dict:
        with self.Session() as session:
            stmt = (
                select(PresenterRow)
                .order_by(PresenterRow.id.asc())
                .limit(1)
                .with_for_update()
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                if on_create is not None:
                    on_create(values)
                row = PresenterRow(id=PRESENTER_SINGLETON_ID)
                session.add(row)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = _utcnow()
            session.commit()
            session.refresh(row)
            return self._as_dict(row)


Base = declarative_base()


class ProjectRow(Base):
    __tablename__ = PROJECTS_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)
    image_src = Column(String, nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False)
    github_link = Column(String, nullable=True)
    live_demo_link = Column(String, nullable=True)
    tech_section = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PresenterRow(Base):
    __tablename__ = PRESENTER_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre = Column(String(50), nullable=False)
    perfil_url = Column(String, nullable=True)
    about_me_description = Column(String(1000), nullable=True)
    contact_email = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
