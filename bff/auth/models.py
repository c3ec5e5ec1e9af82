"""
Auth request and response models.
"""

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+[1-9]\d{6,14}$"

CONFIRMATION_MESSAGE = "Account created. Please check your email to confirm your account."

SocialPlatform = Literal["instagram", "tiktok", "youtube", "twitter", "twitch", "facebook"]


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=6, max_length=128)


class RegisterCreatorRequest(BaseModel):
    """Creator sign-up with the extended profile stored as user metadata."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=128)
    display_name: str = Field(min_length=1, max_length=80)
    legal_name: str = Field(min_length=1, max_length=160)
    country_code: str = Field(min_length=2, max_length=2)
    phone: str = Field(pattern=PHONE_PATTERN)
    date_of_birth: date
    largest_following_platform: SocialPlatform
    social_handle: str = Field(min_length=1, max_length=100)
    follower_count: int = Field(ge=0)

    def to_metadata(self) -> dict[str, Any]:
        return {
            "user_type": "creator",
            "display_name": self.display_name,
            "legal_name": self.legal_name,
            "country_code": self.country_code.upper(),
            "phone": self.phone,
            "date_of_birth": self.date_of_birth.isoformat(),
            "largest_following_platform": self.largest_following_platform,
            "social_handle": self.social_handle,
            "follower_count": self.follower_count,
        }


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    """Session issued by sign-in, refresh or an auto-confirmed sign-up."""

    user_id: str
    email: str | None = None
    role: str
    user_type: str
    access_token: str
    refresh_token: str
    expires_in: int


class MessageResponse(BaseModel):
    message: str
