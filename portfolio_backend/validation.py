"""
Payload validation and resolution of project commands.

The presence of an uploaded image decides whether ``imageSrc`` is required,
so each project request is resolved once into one of four command variants
before any service runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Type, Union

from fastapi import UploadFile
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from portfolio_backend.errors import ValidationError, error_details
from portfolio_backend.schemas import (
    ProjectCreate,
    ProjectCreateWithFile,
    ProjectUpdate,
    ProjectUpdateWithFile,
)

IMAGE_REQUIRED_MESSAGE = "An image is required. Provide a file or an image URL."


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class CreateWithUrl:
    fields: dict


@dataclass(frozen=True)
class CreateWithFile:
    fields: dict
    image: ImageUpload


@dataclass(frozen=True)
class UpdateWithUrl:
    project_id: int
    fields: dict


@dataclass(frozen=True)
class UpdateWithFile:
    project_id: int
    fields: dict
    image: ImageUpload


ProjectCommand = Union[CreateWithUrl, CreateWithFile, UpdateWithUrl, UpdateWithFile]


def validate_payload(model: Type[BaseModel], payload: Mapping) -> dict:
    """
    Validate ``payload`` against ``model``.

    Returns only the declared fields the caller actually sent, so partial
    updates never overwrite columns with defaults.
    """
    try:
        validated = model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid input data", details=error_details(exc.errors())
        ) from None
    return validated.model_dump(exclude_unset=True)


def resolve_create_command(
    payload: Mapping, image: Optional[ImageUpload]
) -> ProjectCommand:
    if image is not None:
        return CreateWithFile(
            fields=validate_payload(ProjectCreateWithFile, payload), image=image
        )
    if not payload.get("imageSrc"):
        raise ValidationError(IMAGE_REQUIRED_MESSAGE)
    return CreateWithUrl(fields=validate_payload(ProjectCreate, payload))


def resolve_update_command(
    project_id: int, payload: Mapping, image: Optional[ImageUpload]
) -> ProjectCommand:
    if image is not None:
        return UpdateWithFile(
            project_id=project_id,
            fields=validate_payload(ProjectUpdateWithFile, payload),
            image=image,
        )
    return UpdateWithUrl(
        project_id=project_id, fields=validate_payload(ProjectUpdate, payload)
    )


async def read_image_upload(
    upload: Optional[UploadFile], max_bytes: int
) -> Optional[ImageUpload]:
    """Check MIME type and size of an uploaded image and load its bytes."""
    if upload is None or not upload.filename:
        return None
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed")
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(
            f"The file is too large. Maximum {max_bytes // (1024 * 1024)}MB allowed."
        )
    return ImageUpload(filename=upload.filename, content_type=content_type, data=data)
