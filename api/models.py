"""
API request and response models for the authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal domain
representation. Route handlers map between the two.

JSON field names are camelCase on the wire (accessToken, usernameOrEmail) and
snake_case in Python. _CamelModel does the translation; FastAPI serializes
response models by alias.

Deliberately absent: no response model carries a password hash or a reset
token.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from auth.models import Permission, Role, User

# Loose shape check only. Deliverability is the mail sink's problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"

# Identifiers and tokens are trimmed. Passwords are plain str and reach the
# hasher exactly as sent.
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register.

    Password length is checked by AuthService (400 validation_error), not here,
    so the rule lives in one place and is driven by configuration.
    """

    email: Trimmed = Field(pattern=EMAIL_PATTERN, max_length=255)
    username: Trimmed = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(max_length=128)
    display_name: Optional[Trimmed] = Field(default=None, max_length=100)


class LoginRequest(_CamelModel):
    username_or_email: Trimmed = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(_CamelModel):
    refresh_token: Trimmed = Field(min_length=1)


class LogoutRequest(_CamelModel):
    refresh_token: Trimmed = Field(min_length=1)


class PasswordResetRequest(_CamelModel):
    email: Trimmed = Field(min_length=1, max_length=255)


class ValidateTokenRequest(_CamelModel):
    token: Trimmed = Field(min_length=1)


class ResetPasswordRequest(_CamelModel):
    token: Trimmed = Field(min_length=1)
    new_password: str = Field(max_length=128)


class RoleCreate(_CamelModel):
    """Request body for POST /roles. permissions are permission names."""

    name: Trimmed = Field(min_length=1, max_length=50)
    description: Optional[Trimmed] = Field(default=None, max_length=255)
    permissions: list[Trimmed] = Field(default_factory=list)


class RoleUpdate(_CamelModel):
    """Request body for PUT /roles/{role_id}.

    Omitted fields are left unchanged. A permissions list, when present,
    replaces the role's whole permission set.
    """

    name: Optional[Trimmed] = Field(default=None, min_length=1, max_length=50)
    description: Optional[Trimmed] = Field(default=None, max_length=255)
    permissions: Optional[list[Trimmed]] = None


class AssignRoleRequest(_CamelModel):
    role_id: int


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelResponse):
    id: int
    email: str
    username: str
    display_name: Optional[str] = None
    provider: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            display_name=user.display_name,
            provider=user.provider,
            bio=user.bio,
            profile_image=user.profile_image,
            created_at=user.created_at,
        )


class TokenPairResponse(_CamelResponse):
    access_token: str
    refresh_token: str


class AuthResponse(_CamelResponse):
    """Response for register and login."""

    user: UserResponse
    access_token: str
    refresh_token: str


class OperationResponse(_CamelResponse):
    success: bool
    message: str


class MessageResponse(_CamelResponse):
    message: str


class ValidResponse(_CamelResponse):
    valid: bool


class MeResponse(_CamelResponse):
    user: UserResponse
    roles: list[str]


class OAuthProviderInfo(_CamelResponse):
    name: str
    label: str


class PermissionResponse(_CamelResponse):
    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, name=permission.name, description=permission.description)


class RoleResponse(_CamelResponse):
    """A role. permissions is empty unless the caller asked for them."""

    id: int
    name: str
    description: Optional[str] = None
    permissions: list[PermissionResponse] = Field(default_factory=list)

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=[PermissionResponse.from_permission(p) for p in role.permissions],
        )


class HasRoleResponse(_CamelResponse):
    user_id: int
    role: str
    has_role: bool


class HasPermissionResponse(_CamelResponse):
    user_id: int
    permission: str
    has_permission: bool


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
