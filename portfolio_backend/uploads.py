"""
Upload orchestration for project images.

Object storage and the record store cannot share a transaction, so every
create/update that carries a new image runs as a saga:

* upload the new image (nothing has been mutated yet if this fails),
* write the record (on failure the new upload is deleted again),
* after commit, delete the image the record used to point at.

Cleanup failures are logged and never change the outcome reported to the
caller; an orphaned object is the accepted cost.
"""

from __future__ import annotations

import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from portfolio_backend.errors import UploadError
from portfolio_backend.saga import Saga
from portfolio_backend.services import ProjectService
from portfolio_backend.storage import StorageClient
from portfolio_backend.validation import (
    CreateWithFile,
    CreateWithUrl,
    ImageUpload,
    ProjectCommand,
    UpdateWithFile,
    UpdateWithUrl,
)

logger = logging.getLogger(__name__)

IMAGE_PREFIX = "projects"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def build_image_path(filename: str, now: float, prefix: str = IMAGE_PREFIX) -> str:
    """Return ``<prefix>/<millis>-<token>-<safe name>`` for a new upload."""
    name = _UNSAFE_NAME_CHARS.sub("-", os.path.basename(filename or "")).strip("-.")
    return f"{prefix}/{int(now * 1000)}-{uuid.uuid4().hex[:8]}-{name or 'image'}"


@dataclass(frozen=True)
class StoredImage:
    path: str
    url: str


class ProjectImageOrchestrator:
    def __init__(
        self,
        projects: ProjectService,
        storage: StorageClient,
        clock: Callable[[], float] = time.time,
    ):
        self._projects = projects
        self._storage = storage
        self._clock = clock

    def execute(self, command: ProjectCommand) -> dict:
        if isinstance(command, CreateWithFile):
            return self._create_with_file(command)
        if isinstance(command, CreateWithUrl):
            return self._projects.create(command.fields)
        if isinstance(command, UpdateWithFile):
            return self._update_with_file(command)
        if isinstance(command, UpdateWithUrl):
            return self._projects.update(command.project_id, command.fields)
        raise TypeError(f"Unsupported project command: {command!r}")

    def _create_with_file(self, command: CreateWithFile) -> dict:
        saga = (
            Saga("create_project")
            .step(
                "upload_image",
                lambda ctx: self._upload(command.image),
                compensation=lambda ctx: self._discard(ctx["upload_image"]),
            )
            .step(
                "insert_record",
                lambda ctx: self._projects.create(
                    {**command.fields, "imageSrc": ctx["upload_image"].url}
                ),
            )
        )
        return saga.run()["insert_record"]

    def _update_with_file(self, command: UpdateWithFile) -> dict:
        project_id = command.project_id
        saga = (
            Saga("update_project")
            .step("fetch_prior", lambda ctx: self._projects.get(project_id))
            .step(
                "upload_image",
                lambda ctx: self._upload(command.image),
                compensation=lambda ctx: self._discard(ctx["upload_image"]),
            )
            .step(
                "update_record",
                lambda ctx: self._projects.update(
                    project_id, {**command.fields, "imageSrc": ctx["upload_image"].url}
                ),
            )
            .after_commit(
                "remove_replaced_image",
                lambda ctx: self._remove_replaced(
                    ctx["fetch_prior"].get("imageSrc"), ctx["upload_image"].url
                ),
            )
        )
        return saga.run()["update_record"]

    def _upload(self, image: ImageUpload) -> StoredImage:
        path = build_image_path(image.filename, self._clock())
        try:
            url = self._storage.upload_bytes(path, image.data, image.content_type)
        except Exception as exc:
            logger.error("Image upload to %s failed: %s", path, exc)
            raise UploadError() from exc
        logger.info("Uploaded image %s (%d bytes)", path, len(image.data))
        return StoredImage(path=path, url=url)

    def _discard(self, stored: StoredImage) -> None:
        logger.info("Removing orphaned upload %s", stored.path)
        self._storage.delete(stored.path)

    def _remove_replaced(self, prior_url: Optional[str], new_url: str) -> None:
        if not prior_url or prior_url == new_url:
            return
        path = self._storage.path_from_url(prior_url)
        if path is None:
            # Caller-supplied URL outside our bucket; nothing of ours to delete.
            return
        logger.info("Removing replaced image %s", path)
        self._storage.delete(path)
