"""
Profile service.

Reads are served through the cache for PROFILE_CACHE_TTL seconds; a
successful update drops both cached views of the profile.
"""

from typing import Any

from loguru import logger

from bff.exceptions import ValidationError
from bff.profile.models import ProfileResponse, ProfileUpdate
from bff.profile.repository import PROFILE_QUERY, ProfileRepository
from bff.services.base import BaseService
from bff.services.cache import CacheProvider

PROFILE_CACHE_TTL = 300


def profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


def creator_profile_key(user_id: str) -> str:
    return f"profile:creator:{user_id}"


class ProfileService(BaseService):
    def __init__(self, repo: ProfileRepository, cache: CacheProvider):
        self.repo = repo
        self.cache = cache

    async def get_profile(self, user_id: str) -> ProfileResponse:
        async def load() -> dict[str, Any]:
            row = self.unwrap(await self.repo.get_profile(user_id), "Profile")
            return ProfileResponse.from_db(row).model_dump()

        data = await self.cache.wrap(profile_key(user_id), load, PROFILE_CACHE_TTL)
        return ProfileResponse.model_validate(data)

    async def get_creator_profile(self, user_id: str) -> ProfileResponse:
        async def load() -> dict[str, Any]:
            result = await self.repo.get_creator_profile(user_id)
            row = self.unwrap(result, "Creator profile")
            return ProfileResponse.from_db(row).model_dump()

        data = await self.cache.wrap(
            creator_profile_key(user_id), load, PROFILE_CACHE_TTL
        )
        return ProfileResponse.model_validate(data)

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> ProfileResponse:
        patch = update.to_patch()
        if not patch:
            raise ValidationError("No profile fields to update")

        result = await self.repo.update_by_id(user_id, patch, columns=PROFILE_QUERY)
        row = self.unwrap(result, "Profile")

        await self.invalidate(user_id)
        logger.info(f"Profile updated for user {user_id}: {sorted(patch)}")
        return ProfileResponse.from_db(row)

    async def invalidate(self, user_id: str) -> None:
        await self.cache.delete_many([profile_key(user_id), creator_profile_key(user_id)])
