"""Profile table access."""

from bff.datastore.repository import BaseRepository
from bff.datastore.types import DbResponse

PROFILE_FIELDS = (
    "id",
    "user_type",
    "role",
    "display_name",
    "bio",
    "country_code",
    "phone",
    "date_of_birth",
    "avatar_url",
    "city",
)

CREATOR_PROFILE_FIELDS = (
    "legal_name",
    "largest_following_platform",
    "social_handle",
    "follower_count",
)

CREATOR_COMMERCIAL_FIELDS = ("onboarding_status", "creator_status")

PROFILE_QUERY = ",".join(PROFILE_FIELDS)

CREATOR_PROFILE_QUERY = ",".join(
    [
        *PROFILE_FIELDS,
        f"creator_profile({','.join(CREATOR_PROFILE_FIELDS)})",
        f"creator_commercial({','.join(CREATOR_COMMERCIAL_FIELDS)})",
    ]
)


class ProfileRepository(BaseRepository):
    async def get_profile(self, user_id: str) -> DbResponse:
        return await self.find_by_id(user_id, columns=PROFILE_QUERY)

    async def get_creator_profile(self, user_id: str) -> DbResponse:
        return await self.find_by_id(user_id, columns=CREATOR_PROFILE_QUERY)
