from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from tradedesk.core.observability import logger
from tradedesk.core.session_state import SessionState
from tradedesk.schemas.auth import (
    AuthEnvelope,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleSignInRequest,
    LoginRequest,
    ProfileEnvelope,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from tradedesk.schemas.users import User
from tradedesk.services.http_pipeline import ApiResult, AuthenticatedPipeline
from tradedesk.services.response_cache import ResponseCache


class AuthError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _failure_message(result: ApiResult, fallback: str) -> str:
    return result.message or fallback


class AuthService:
    def __init__(
        self,
        pipeline: AuthenticatedPipeline,
        session: SessionState | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.session = session or pipeline.session
        self.cache = cache

    async def login(self, email: str, password: str) -> User:
        body = LoginRequest(email=email, password=password).to_wire()
        result = await self.pipeline.post("/Auth/login", json=body)
        return self._establish(result, "Login failed")

    async def google_sign_in(self, id_token: str) -> User:
        try:
            body = GoogleSignInRequest(id_token=id_token).to_wire()
        except ValidationError as exc:
            raise AuthError("Google credential is missing") from exc
        result = await self.pipeline.post("/Auth/google", json=body)
        return self._establish(result, "Google sign-in failed")

    async def register(self, name: str, email: str, password: str) -> User:
        body = RegisterRequest(name=name, email=email, password=password).to_wire()
        result = await self.pipeline.post("/Auth/register", json=body)
        return self._establish(result, "Registration failed")

    async def get_profile(self) -> User:
        result = await self.pipeline.get("/users/me")
        user = self._profile(result, "Could not load profile")
        self.session.update_user(user)
        return user

    async def update_profile(self, name: Optional[str] = None, email: Optional[str] = None) -> User:
        body = UpdateProfileRequest(name=name, email=email).to_wire()
        result = await self.pipeline.put("/users/me", json=body)
        user = self._profile(result, "Could not update profile")
        self.session.update_user(user)
        if self.cache is not None:
            self.cache.invalidate([("User", user.id)])
        return user

    async def forgot_password(self, email: str) -> Optional[str]:
        """Ask the server to mail a reset link; returns its confirmation message."""

        try:
            body = ForgotPasswordRequest(email=email).to_wire()
        except ValidationError as exc:
            raise AuthError("Email is required") from exc
        result = await self.pipeline.post("/Auth/forgot-password", json=body)
        return self._acknowledge(result, "Could not send reset email")

    async def reset_password(self, token: str, new_password: str) -> Optional[str]:
        try:
            body = ResetPasswordRequest(token=token, new_password=new_password).to_wire()
        except ValidationError as exc:
            raise AuthError("Reset token and new password are required") from exc
        result = await self.pipeline.post("/Auth/reset-password", json=body)
        return self._acknowledge(result, "Could not reset password")

    async def change_password(self, current_password: str, new_password: str) -> Optional[str]:
        try:
            body = ChangePasswordRequest(
                current_password=current_password, new_password=new_password
            ).to_wire()
        except ValidationError as exc:
            raise AuthError("Current and new password are required") from exc
        result = await self.pipeline.post("/users/change-password", json=body)
        return self._acknowledge(result, "Could not change password")

    def logout(self) -> None:
        self.session.logout()

    def _establish(self, result: ApiResult, fallback: str) -> User:
        if not result.success:
            logger.warning(
                "auth_failed",
                extra={"status_code": result.status_code, "request_id": result.request_id},
            )
            raise AuthError(_failure_message(result, fallback), result.status_code)
        try:
            envelope = AuthEnvelope.model_validate(result.data)
        except ValidationError as exc:
            raise AuthError(fallback, result.status_code) from exc

        payload = envelope.data
        if payload is None or not payload.access_token or payload.user is None:
            raise AuthError(envelope.message or fallback, result.status_code)

        user = payload.user.to_user()
        # Nothing fetched under the previous identity may survive the new one.
        if self.cache is not None:
            self.cache.reset()
        self.session.set_credentials(user, payload.access_token, payload.refresh_token)
        logger.info("auth_login_succeeded", extra={"user_id": user.id})
        return user

    def _acknowledge(self, result: ApiResult, fallback: str) -> Optional[str]:
        if not result.success:
            logger.warning(
                "auth_password_request_failed",
                extra={"status_code": result.status_code, "request_id": result.request_id},
            )
            raise AuthError(_failure_message(result, fallback), result.status_code)
        return result.message

    def _profile(self, result: ApiResult, fallback: str) -> User:
        if not result.success:
            raise AuthError(_failure_message(result, fallback), result.status_code)
        try:
            envelope = ProfileEnvelope.model_validate(result.data)
        except ValidationError as exc:
            raise AuthError(fallback, result.status_code) from exc
        if envelope.data is None:
            raise AuthError(envelope.message or fallback, result.status_code)

        user = envelope.data.to_user()
        current = self.session.user
        # The profile endpoint may omit memberships; keep the ones we know.
        if current is not None and not user.companies:
            user = user.model_copy(update={"companies": current.companies})
        return user
