"""
User Profiles API — schemas for the QR profile exchange.

The scan endpoint returns the decoded profile as is; nothing here is
persisted.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

PROFILE_QR_TYPE = "user_profile"


class ScannedProfile(BaseModel):
    """Profile fields recovered from a QR payload.  Absent fields are ``""``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    full_name: str
    email: str
    phone_number: str = ""
    bio: str = ""
    location: str = ""
    date_of_birth: str = ""
    avatar_url: str = ""


class ScannedProfileEnvelope(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: ScannedProfile
