"""
HTTP routes for the portfolio API.

Every route reads its input from the sanitized payload left by
``sanitize_request``; guards run in the order sanitize, rate limit, auth,
file handling, validation.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request

from portfolio_backend.db import PRESENTER_TABLE, PROJECTS_TABLE
from portfolio_backend.dependencies import (
    get_orchestrator,
    get_profile_service,
    get_project_service,
    get_user_service,
)
from portfolio_backend.schemas import (
    ApiResponse,
    LoginPayload,
    PresenterCreate,
    PresenterUpdate,
    RegisterPayload,
    UserResponse,
)
from portfolio_backend.security import (
    database_audit,
    get_payload,
    optional_user,
    rate_limit,
    request_settings,
    require_permission,
    require_user,
)
from portfolio_backend.services import ProfileService, ProjectService, UserService
from portfolio_backend.uploads import ProjectImageOrchestrator
from portfolio_backend.validation import (
    ImageUpload,
    read_image_upload,
    resolve_create_command,
    resolve_update_command,
    validate_payload,
)

logger = logging.getLogger(__name__)

IMAGE_FIELD = "image"

router = APIRouter()
profiles_router = APIRouter(prefix="/profiles", tags=["profiles"])
projects_router = APIRouter(prefix="/projects", tags=["projects"])
users_router = APIRouter(prefix="/users", tags=["users"])


async def get_image_upload(request: Request) -> Optional[ImageUpload]:
    files = getattr(request.state, "files", None) or {}
    return await read_image_upload(
        files.get(IMAGE_FIELD), request_settings(request).max_upload_bytes
    )


# --- Profiles ----------------------------------------------------------------


@profiles_router.get(
    "/read",
    response_model=ApiResponse,
    dependencies=[
        Depends(rate_limit("read_profile", 200)),
        Depends(optional_user),
        Depends(database_audit("SELECT", PRESENTER_TABLE)),
    ],
)
def read_profile(profiles: ProfileService = Depends(get_profile_service)):
    return ApiResponse(message="About me retrieved successfully", data=profiles.read())


@profiles_router.post(
    "/create",
    response_model=ApiResponse,
    status_code=201,
    dependencies=[
        Depends(rate_limit("create_profile", 5)),
        Depends(require_user),
        Depends(database_audit("UPSERT", PRESENTER_TABLE)),
    ],
)
def create_profile(
    payload: dict = Depends(get_payload),
    profiles: ProfileService = Depends(get_profile_service),
):
    fields = validate_payload(PresenterCreate, payload)
    return ApiResponse(
        message="About me created/updated successfully", data=profiles.upsert(fields)
    )


@profiles_router.patch(
    "/update",
    response_model=ApiResponse,
    dependencies=[
        Depends(rate_limit("update_profile", 10)),
        Depends(require_user),
        Depends(database_audit("UPDATE", PRESENTER_TABLE)),
    ],
)
def update_profile(
    payload: dict = Depends(get_payload),
    profiles: ProfileService = Depends(get_profile_service),
):
    fields = validate_payload(PresenterUpdate, payload)
    return ApiResponse(
        message="About me created/updated successfully", data=profiles.upsert(fields)
    )


# --- Projects ----------------------------------------------------------------


@projects_router.get(
    "/read",
    response_model=ApiResponse,
    dependencies=[
        Depends(rate_limit("read_projects", 100)),
        Depends(optional_user),
        Depends(database_audit("SELECT", PROJECTS_TABLE)),
    ],
)
def read_projects(projects: ProjectService = Depends(get_project_service)):
    return ApiResponse(message="Projects retrieved successfully", data=projects.list())


@projects_router.post(
    "/create",
    response_model=ApiResponse,
    status_code=201,
    dependencies=[
        Depends(rate_limit("create_project", 10)),
        Depends(require_permission(PROJECTS_TABLE, "create")),
        Depends(database_audit("INSERT", PROJECTS_TABLE)),
    ],
)
def create_project(
    image: Optional[ImageUpload] = Depends(get_image_upload),
    payload: dict = Depends(get_payload),
    orchestrator: ProjectImageOrchestrator = Depends(get_orchestrator),
):
    command = resolve_create_command(payload, image)
    return ApiResponse(
        message="Project created successfully", data=orchestrator.execute(command)
    )


@projects_router.patch(
    "/update/{project_id}",
    response_model=ApiResponse,
    dependencies=[
        Depends(rate_limit("update_project", 20)),
        Depends(require_permission(PROJECTS_TABLE, "update")),
        Depends(database_audit("UPDATE", PROJECTS_TABLE)),
    ],
)
def update_project(
    project_id: int = Path(..., gt=0),
    image: Optional[ImageUpload] = Depends(get_image_upload),
    payload: dict = Depends(get_payload),
    orchestrator: ProjectImageOrchestrator = Depends(get_orchestrator),
):
    command = resolve_update_command(project_id, payload, image)
    return ApiResponse(
        message="Project updated successfully", data=orchestrator.execute(command)
    )


@projects_router.delete(
    "/delete/{project_id}",
    response_model=ApiResponse,
    dependencies=[
        Depends(rate_limit("delete_project", 5)),
        Depends(require_permission(PROJECTS_TABLE, "delete")),
        Depends(database_audit("DELETE", PROJECTS_TABLE)),
    ],
)
def delete_project(
    project_id: int = Path(..., gt=0),
    projects: ProjectService = Depends(get_project_service),
):
    return ApiResponse(
        message="Project deleted successfully", data=projects.delete(project_id)
    )


# --- Users -------------------------------------------------------------------


@users_router.post("/login", response_model=UserResponse)
def login(
    payload: dict = Depends(get_payload),
    users: UserService = Depends(get_user_service),
):
    credentials = validate_payload(LoginPayload, payload)
    session = users.login(credentials["email"], credentials["password"])
    return UserResponse(message="Signed in successfully", data=session)


@users_router.post(
    "/register",
    response_model=UserResponse,
    status_code=201,
    dependencies=[Depends(require_user)],
)
def register(
    payload: dict = Depends(get_payload),
    users: UserService = Depends(get_user_service),
):
    account = validate_payload(RegisterPayload, payload)
    created = users.register(account["email"], account["password"])
    return UserResponse(message="User created successfully", data=created)


@users_router.post(
    "/logout",
    response_model=UserResponse,
    dependencies=[Depends(require_user)],
)
def logout(request: Request, users: UserService = Depends(get_user_service)):
    users.logout(request.state.access_token)
    return UserResponse(message="Signed out successfully")


router.include_router(profiles_router)
router.include_router(projects_router)
router.include_router(users_router)
