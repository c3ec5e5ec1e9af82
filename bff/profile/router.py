"""Profile endpoints."""

from fastapi import APIRouter, Depends

from bff.api.auth import current_user
from bff.api.deps import get_cache, table
from bff.api.routing import idempotent_route_class
from bff.datastore.clients import LazyTable, RequestUser
from bff.profile.models import ProfileResponse, ProfileUpdate
from bff.profile.repository import ProfileRepository
from bff.profile.service import ProfileService
from bff.services.cache import TieredCache

router = APIRouter(
    prefix="/v1/profile",
    tags=["profile"],
    route_class=idempotent_route_class(),
)


def get_profile_service(
    profiles: LazyTable = Depends(table("profiles")),
    cache: TieredCache = Depends(get_cache),
) -> ProfileService:
    return ProfileService(ProfileRepository(profiles), cache)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    user: RequestUser = Depends(current_user),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    return await service.get_profile(user.id)


@router.patch("/me", response_model=ProfileResponse)
async def update_my_profile(
    update: ProfileUpdate,
    user: RequestUser = Depends(current_user),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    return await service.update_profile(user.id, update)


@router.get("/{user_id}/creator", response_model=ProfileResponse)
async def get_creator_profile(
    user_id: str,
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    return await service.get_creator_profile(user_id)
