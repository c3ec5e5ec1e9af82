"""
Profile request and response models.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class CreatorProfile(BaseModel):
    legal_name: str | None = None
    largest_following_platform: str | None = None
    social_handle: str | None = None
    follower_count: int | None = None


class CreatorCommercial(BaseModel):
    onboarding_status: str | None = None
    creator_status: str | None = None


class ProfileResponse(BaseModel):
    """A profile row, optionally with creator relations."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_type: str
    role: str
    display_name: str
    bio: str | None = None
    country_code: str
    phone: str | None = None
    date_of_birth: str | None = None
    avatar_url: str | None = None
    city: str | None = None
    creator_profile: CreatorProfile | None = None
    creator_commercial: CreatorCommercial | None = None

    @classmethod
    def from_db(cls, row: dict[str, Any]) -> "ProfileResponse":
        """Build from a row; to-many relations arrive as lists, keep the first."""
        data = dict(row)
        for relation in ("creator_profile", "creator_commercial"):
            value = data.get(relation)
            if isinstance(value, list):
                data[relation] = value[0] if value else None
        return cls.model_validate(data)


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=100)
    bio: str | None = Field(default=None, max_length=1000)
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    phone: str | None = None
    date_of_birth: str | None = None
    avatar_url: str | None = None
    city: str | None = None
    user_type: Literal["fan", "creator"] | None = None

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)
