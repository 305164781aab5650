from typing import Optional

from pydantic import Field

from tradedesk.schemas.common import ApiEnvelope, ApiModel
from tradedesk.schemas.users import User, UserInfo


class LoginRequest(ApiModel):
    email: str
    password: str


class RegisterRequest(ApiModel):
    name: str
    email: str
    password: str


class GoogleSignInRequest(ApiModel):
    id_token: str = Field(..., min_length=1)


class RefreshTokenRequest(ApiModel):
    refresh_token: str


class ForgotPasswordRequest(ApiModel):
    email: str = Field(..., min_length=1)


class ResetPasswordRequest(ApiModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class UpdateProfileRequest(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None


class ChangePasswordRequest(ApiModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class AuthResponse(ApiModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: int = 0
    user: Optional[UserInfo] = None


class RefreshedCredentials(ApiModel):
    """Payload of a successful refresh: `{accessToken, refreshToken, user}`."""

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    user: Optional[User] = None


AuthEnvelope = ApiEnvelope[AuthResponse]
RefreshEnvelope = ApiEnvelope[RefreshedCredentials]
ProfileEnvelope = ApiEnvelope[UserInfo]
