"""
Resource services for projects, the presenter profile and users.

Each service translates between the public field names used by the API and
the record store's column names, then performs a single call against the
store or the auth provider.
"""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional

from portfolio_backend.auth import AuthClient
from portfolio_backend.db import RecordStore
from portfolio_backend.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = {
    "imageSrc": "image_src",
    "title": "title",
    "description": "description",
    "githubLink": "github_link",
    "liveDemoLink": "live_demo_link",
    "techSection": "tech_section",
}

PRESENTER_COLUMNS = {
    "nombre": "nombre",
    "perfilUrl": "perfil_url",
    "aboutMeDescription": "about_me_description",
    "contactEmail": "contact_email",
}

# A presenter row cannot be created without these.
PRESENTER_REQUIRED_ON_CREATE = ("nombre", "perfilUrl", "contactEmail")


def _camel(name: str) -> str:
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), name)


def to_columns(fields: Mapping, columns: Mapping[str, str]) -> dict:
    """Translate the fields present in ``fields``; anything unknown is dropped."""
    return {columns[name]: value for name, value in fields.items() if name in columns}


def to_public(row: Optional[dict], columns: Mapping[str, str]) -> Optional[dict]:
    if row is None:
        return None
    public_names = {column: name for name, column in columns.items()}
    return {public_names.get(key, _camel(key)): value for key, value in row.items()}


class ProjectService:
    def __init__(self, store: RecordStore):
        self._store = store

    def list(self) -> list[dict]:
        return [to_public(row, PROJECT_COLUMNS) for row in self._store.list_projects()]

    def get(self, project_id: int) -> dict:
        row = self._store.get_project(project_id)
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        return to_public(row, PROJECT_COLUMNS)

    def create(self, fields: Mapping) -> dict:
        row = self._store.insert_project(to_columns(fields, PROJECT_COLUMNS))
        logger.info("Created project %s", row.get("id"))
        return to_public(row, PROJECT_COLUMNS)

    def update(self, project_id: int, fields: Mapping) -> dict:
        values = to_columns(fields, PROJECT_COLUMNS)
        if not values:
            return self.get(project_id)
        row = self._store.update_project(project_id, values)
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        return to_public(row, PROJECT_COLUMNS)

    def delete(self, project_id: int) -> dict:
        # The referenced image stays in storage.
        row = self._store.delete_project(project_id)
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        logger.info("Deleted project %s", project_id)
        return to_public(row, PROJECT_COLUMNS)


class ProfileService:
    """Presenter singleton: create and update collapse into one upsert."""

    def __init__(self, store: RecordStore):
        self._store = store

    def read(self) -> Optional[dict]:
        return to_public(self._store.get_presenter(), PRESENTER_COLUMNS)

    def upsert(self, fields: Mapping) -> dict:
        def require_core_fields(values: dict) -> None:
            missing = [name for name in PRESENTER_REQUIRED_ON_CREATE if not fields.get(name)]
            if missing:
                raise ValidationError(
                    f"The field '{missing[0]}' is required.",
                    details=[{"field": name, "message": f"'{name}' is required"} for name in missing],
                )
            logger.info("No presenter yet, creating a new row")

        row = self._store.upsert_presenter(
            to_columns(fields, PRESENTER_COLUMNS), on_create=require_core_fields
        )
        logger.info("Presenter row %s saved", row["id"])
        return to_public(row, PRESENTER_COLUMNS)


class UserService:
    def __init__(self, auth: AuthClient):
        self._auth = auth

    def login(self, email: str, password: str) -> dict:
        return self._auth.sign_in(email, password).as_dict()

    def register(self, email: str, password: str) -> dict:
        return self._auth.sign_up(email, password).as_dict()

    def logout(self, access_token: str) -> None:
        self._auth.sign_out(access_token)
