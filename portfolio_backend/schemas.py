"""
Pydantic schemas for the portfolio API.

Payload models use the public (camelCase) field names; unknown fields are
dropped on validation.
"""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

_URL_ADAPTER = TypeAdapter(AnyUrl)

PASSWORD_POLICY = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[!@#$%^&*])")


def _validate_uri(value: str) -> str:
    try:
        _URL_ADAPTER.validate_python(value)
    except PydanticValidationError:
        raise ValueError("must be a valid URI") from None
    # Keep the caller's spelling; AnyUrl would normalise it.
    return value


def _validate_optional_uri(value: str) -> str:
    if value == "":
        return value
    return _validate_uri(value)


UriStr = Annotated[str, AfterValidator(_validate_uri)]
UriOrEmptyStr = Annotated[str, AfterValidator(_validate_optional_uri)]
ProjectTitle = Annotated[str, StringConstraints(min_length=3, max_length=100)]
ProjectDescription = Annotated[str, StringConstraints(min_length=10, max_length=500)]
TechSection = Annotated[str, StringConstraints(max_length=50)]
PresenterName = Annotated[str, StringConstraints(min_length=2, max_length=50)]
AboutMe = Annotated[str, StringConstraints(min_length=10, max_length=1000)]


class _Payload(BaseModel):
    # Omitted fields keep their unvalidated None default; an explicit null
    # fails the field type.
    model_config = ConfigDict(extra="ignore")


class ProjectCreateWithFile(_Payload):
    """Create payload when the image arrives as an uploaded file."""

    title: ProjectTitle
    description: ProjectDescription
    githubLink: UriOrEmptyStr = None
    liveDemoLink: UriOrEmptyStr = None
    techSection: TechSection = None


class ProjectCreate(ProjectCreateWithFile):
    imageSrc: UriStr


class ProjectUpdateWithFile(_Payload):
    title: ProjectTitle = None
    description: ProjectDescription = None
    githubLink: UriOrEmptyStr = None
    liveDemoLink: UriOrEmptyStr = None
    techSection: TechSection = None


class ProjectUpdate(ProjectUpdateWithFile):
    imageSrc: UriStr = None


class PresenterCreate(_Payload):
    nombre: PresenterName
    perfilUrl: UriStr = None
    aboutMeDescription: AboutMe = None
    contactEmail: EmailStr = None


class PresenterUpdate(_Payload):
    nombre: PresenterName = None
    perfilUrl: UriStr = None
    aboutMeDescription: AboutMe = None
    contactEmail: EmailStr = None


class RegisterPayload(_Payload):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("password")
    @classmethod
    def check_password_policy(cls, value: str) -> str:
        if not PASSWORD_POLICY.match(value):
            raise ValueError(
                "must contain a lowercase letter, an uppercase letter, "
                "a number and a special character"
            )
        return value


class LoginPayload(_Payload):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ApiResponse(BaseModel):
    message: str
    data: Any = None


class UserResponse(BaseModel):
    success: bool = True
    message: str
    data: Any = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime: float
    environment: str
