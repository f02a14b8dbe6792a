from typing import Any
from uuid import UUID

from ..auth_utils import (
    create_access_token,
    create_refresh_token,
    create_reset_token,
    decode_access_token,
    decode_refresh_token,
    decode_token,
    hash_password,
    password_score,
    password_strength,
    token_subject,
    verify_password,
)
from ..config import settings
from ..errors import ConflictProblem, NotFoundProblem, UnauthorizedProblem, ValidationProblem
from ..logging_config import get_logger
from ..persistence import DUPLICATE_EMAIL, Persistence
from ..schemas import (
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserPasswordChange,
    UserProfileUpdate,
)

logger = get_logger(__name__)


class AuthService:
    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def register(self, payload: RegisterRequest) -> dict[str, str]:
        if self.persistence.get_user_by_email(payload.email) is not None:
            raise ConflictProblem(DUPLICATE_EMAIL, instance="/auth/register")
        user = self.persistence.create_user(payload.name, payload.email, hash_password(payload.password))
        logger.info("user.registered", user_id=str(user["id"]))
        return self.issue_tokens(user["id"])

    def login(self, payload: LoginRequest) -> dict[str, str]:
        user = self.persistence.get_user_by_email(payload.email)
        stored_hash = self.persistence.get_password_hash(user["id"]) if user else None
        if user is None or not stored_hash or not verify_password(payload.password, stored_hash):
            raise UnauthorizedProblem("Invalid credentials.", instance="/auth/login")
        logger.info("user.logged_in", user_id=str(user["id"]))
        return self.issue_tokens(user["id"])

    @staticmethod
    def issue_tokens(user_id: UUID) -> dict[str, str]:
        return {"access_token": create_access_token(user_id), "refresh_token": create_refresh_token(user_id)}

    def refresh(self, refresh_token: str | None) -> dict[str, str]:
        """Exchange a refresh token for a new access/refresh pair."""
        user_id = decode_refresh_token(refresh_token) if refresh_token else None
        if user_id is None or self.persistence.get_user_by_id(user_id) is None:
            raise UnauthorizedProblem("Invalid refresh token.", instance="/auth/refresh")
        return self.issue_tokens(user_id)

    def authenticate(self, token: str) -> UUID:
        user_id = decode_access_token(token)
        if user_id is None:
            raise UnauthorizedProblem("Invalid or expired token.")
        if self.persistence.get_user_by_id(user_id) is None:
            raise UnauthorizedProblem("User not found.")
        return user_id

    def get_profile(self, user_id: UUID) -> dict[str, Any]:
        user = self.persistence.get_user_by_id(user_id)
        if user is None:
            raise NotFoundProblem("User not found.", instance="/users/me")
        return user

    def update_profile(self, user_id: UUID, payload: UserProfileUpdate) -> dict[str, Any]:
        self.get_profile(user_id)
        fields: dict[str, Any] = {}
        if payload.name is not None:
            fields["name"] = payload.name
        if payload.email is not None:
            owner = self.persistence.get_user_by_email(payload.email)
            if owner is not None and owner["id"] != user_id:
                raise ConflictProblem(DUPLICATE_EMAIL, instance="/users/me")
            fields["email"] = payload.email
        return self.persistence.update_user(user_id, fields)

    def change_password(self, user_id: UUID, payload: UserPasswordChange) -> dict[str, str]:
        stored_hash = self.persistence.get_password_hash(user_id)
        if not stored_hash or not verify_password(payload.currentPassword, stored_hash):
            raise ValidationProblem("Current password is incorrect.", instance="/users/me/change-password")
        self.persistence.set_password_hash(user_id, hash_password(payload.newPassword))
        logger.info("user.password_changed", user_id=str(user_id))
        return {"message": "Password updated successfully."}

    def delete_user(self, user_id: UUID) -> dict[str, str]:
        self.get_profile(user_id)
        self.persistence.delete_user(user_id)
        logger.info("user.removed", user_id=str(user_id))
        return {"message": "User removed successfully."}

    @staticmethod
    def check_password_strength(password: str) -> dict[str, Any]:
        return {"score": password_score(password), "strength": password_strength(password)}

    def forgot_password(self, email: str) -> dict[str, Any]:
        """Issue a short-lived reset token. Unknown emails get the same answer without a token."""
        result: dict[str, Any] = {"message": "If the email exists, a reset link will be sent."}
        user = self.persistence.get_user_by_email(email)
        if user is None:
            return result
        logger.info("user.reset_requested", user_id=str(user["id"]))
        # TODO: deliver the token by email; it is only returned outside production.
        if settings.app_env != "production":
            result["reset_token"] = create_reset_token(user["id"])
        return result

    def reset_password(self, payload: ResetPasswordRequest) -> dict[str, str]:
        claims = decode_token(payload.token)
        if claims is None:
            raise ValidationProblem("Invalid or expired token.", instance="/auth/reset-password")
        user_id = token_subject(claims, "reset")
        if user_id is None:
            raise ValidationProblem("Invalid token.", instance="/auth/reset-password")
        if self.persistence.get_user_by_id(user_id) is None:
            raise NotFoundProblem("User not found.", instance="/auth/reset-password")
        self.persistence.set_password_hash(user_id, hash_password(payload.newPassword))
        logger.info("user.password_reset", user_id=str(user_id))
        return {"message": "Password reset successfully."}
