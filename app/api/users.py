"""
User Profiles API — Users API

Thin handlers over ``UserService``: each one validates via FastAPI/Pydantic,
calls the service and wraps the result in the ``{status, message, data}``
envelope.  Error envelopes are produced by ``app.api.errors``.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status

from app.api.deps import get_app_settings, get_user_service
from app.config import Settings
from app.errors import RequestValidationFailed
from app.schemas.qr import ScannedProfileEnvelope
from app.schemas.user import (
    DeleteEnvelope,
    ErrorEnvelope,
    MAX_PAGE,
    SortField,
    SortOrder,
    UserCreate,
    UserEnvelope,
    UserListEnvelope,
    UserListQuery,
    UserResponse,
    UserUpdate,
)
from app.services import qr_service
from app.services.user_service import UserService

logger = structlog.get_logger("profiles.api.users")

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorEnvelope},
    404: {"model": ErrorEnvelope},
    409: {"model": ErrorEnvelope},
}


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List users with filtering, sorting and pagination
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "",
    response_model=UserListEnvelope,
    summary="List users",
    responses={400: _ERRORS[400]},
)
async def list_users(
    page: int = Query(1, ge=1, le=MAX_PAGE, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in fullName, email or bio"),
    location: Optional[str] = Query(None, description="Filter by location"),
    sort_by: SortField = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("desc", alias="sortOrder"),
    service: UserService = Depends(get_user_service),
) -> UserListEnvelope:
    """Return one page of users matching the optional search and location filters."""
    query = UserListQuery(
        page=page,
        limit=limit,
        search=search,
        location=location,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await service.get_users(query)

    return UserListEnvelope(
        message="Users retrieved successfully",
        data=[UserResponse.model_validate(u) for u in result.users],
        pagination=result.pagination,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create a new user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=UserEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new user",
    responses={400: _ERRORS[400], 409: _ERRORS[409]},
)
async def create_user(
    payload: UserCreate,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """Create a profile; a taken email is a 409."""
    user = await service.create_user(payload)
    return UserEnvelope(
        message="User created successfully",
        data=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /qr/scan — Read a profile from an uploaded QR image
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/qr/scan",
    response_model=ScannedProfileEnvelope,
    summary="Decode a profile QR code",
    responses={400: _ERRORS[400]},
)
async def scan_profile_qr(
    file: UploadFile = File(..., description="Image containing a profile QR code"),
) -> ScannedProfileEnvelope:
    """Return the profile fields carried by the QR code.  Nothing is stored."""
    image_bytes = await file.read()
    if not image_bytes:
        raise RequestValidationFailed("Uploaded file is empty")

    profile = qr_service.scan_profile(image_bytes)
    logger.info("scan_profile_qr_complete", email=profile.email)
    return ScannedProfileEnvelope(message="QR code scanned successfully", data=profile)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Get user by ID
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=UserEnvelope,
    summary="Get user by ID",
    responses={400: _ERRORS[400], 404: _ERRORS[404]},
)
async def get_user(
    user_id: uuid.UUID,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """Fetch a single profile by id."""
    user = await service.get_user_by_id(str(user_id))
    return UserEnvelope(
        message="User retrieved successfully",
        data=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/qr — Profile QR code as PNG
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/qr",
    summary="Render the user's profile as a QR code",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}},
        404: _ERRORS[404],
    },
)
async def get_user_qr(
    user_id: uuid.UUID,
    service: UserService = Depends(get_user_service),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Render the profile as a PNG QR code for another client to scan."""
    user = await service.get_user_by_id(str(user_id))
    png = qr_service.profile_to_qr(
        user,
        box_size=settings.QR_BOX_SIZE,
        border=settings.QR_BORDER,
    )
    filename = "_".join(user.full_name.split()) + "_profile_qr.png"
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{user_id} — Partial update
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{user_id}",
    response_model=UserEnvelope,
    summary="Update user details",
    responses={400: _ERRORS[400], 404: _ERRORS[404], 409: _ERRORS[409]},
)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """Only fields present in the request body are applied."""
    if not payload.model_fields_set:
        raise RequestValidationFailed("No update data provided")

    user = await service.update_user(str(user_id), payload)
    return UserEnvelope(
        message="User updated successfully",
        data=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{user_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{user_id}",
    response_model=DeleteEnvelope,
    summary="Delete a user",
    responses={400: _ERRORS[400], 404: _ERRORS[404]},
)
async def delete_user(
    user_id: uuid.UUID,
    service: UserService = Depends(get_user_service),
) -> DeleteEnvelope:
    """Permanently remove the profile."""
    await service.delete_user(str(user_id))
    return DeleteEnvelope(message="User deleted successfully")
