"""
api/routes/v1/roles.py -- Role and permission management (admin only).

Routes:
  GET    /roles                                   -- list roles (?includePermissions=true)
  GET    /roles/permissions                       -- list permissions
  GET    /roles/{role_id}                         -- one role with permissions
  POST   /roles                                   -- create role; 201
  PUT    /roles/{role_id}                         -- update name/description/permission set
  DELETE /roles/{role_id}                         -- delete role and its links; 204
  GET    /roles/users/{user_id}                   -- a user's roles
  POST   /roles/users/{user_id}/assign            -- {roleId}; 201
  DELETE /roles/users/{user_id}/roles/{role_id}   -- remove role from user; 204
  GET    /roles/users/{user_id}/has-role          -- ?role=<name>
  GET    /roles/users/{user_id}/has-permission    -- ?permission=<name>

Every route depends on require_admin: 401 without a valid access token, 403
for an authenticated user without the admin role. RoleStore raises
NotFoundError / ConflictError, which api.main maps to 404 / 409.

GET /roles/permissions is registered before GET /roles/{role_id} so the
literal segment is never parsed as an id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AssignRoleRequest,
    HasPermissionResponse,
    HasRoleResponse,
    OperationResponse,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
)
from auth.dependencies import require_admin
from auth.models import User
from auth.rbac import RoleStore

router = APIRouter(prefix="/roles")


def _store(request: Request) -> RoleStore:
    return request.app.state.role_store


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    include_permissions: bool = Query(default=False, alias="includePermissions"),
    current_user: User = Depends(require_admin),
) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in _store(request).list_roles(include_permissions)]


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(request: Request, current_user: User = Depends(require_admin)) -> list[PermissionResponse]:
    return [PermissionResponse.from_permission(p) for p in _store(request).list_permissions()]


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, current_user: User = Depends(require_admin)) -> RoleResponse:
    return RoleResponse.from_role(_store(request).get_role(role_id))


@router.post("", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate, current_user: User = Depends(require_admin)) -> RoleResponse:
    """Create a role. 409 if the name is taken, 404 if a permission name is unknown."""
    role = _store(request).create_role(body.name, body.description, body.permissions)
    return RoleResponse.from_role(role)


@router.put("/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_admin),
) -> RoleResponse:
    role = _store(request).update_role(role_id, body.name, body.description, body.permissions)
    return RoleResponse.from_role(role)


@router.delete("/{role_id}", status_code=204)
def delete_role(request: Request, role_id: int, current_user: User = Depends(require_admin)) -> Response:
    _store(request).delete_role(role_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User <-> role
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}", response_model=list[RoleResponse])
def get_user_roles(request: Request, user_id: int, current_user: User = Depends(require_admin)) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in _store(request).get_user_roles(user_id)]


@router.post("/users/{user_id}/assign", response_model=OperationResponse, status_code=201)
def assign_role(
    request: Request,
    user_id: int,
    body: AssignRoleRequest,
    current_user: User = Depends(require_admin),
) -> OperationResponse:
    """Give a user a role. 404 for an unknown user or role, 409 if already held.

    The user's existing access tokens keep their old roles claim until they
    refresh; authorization itself always reads the store.
    """
    _store(request).assign_role(user_id, body.role_id)
    return OperationResponse(success=True, message="Role assigned.")


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def remove_role(
    request: Request,
    user_id: int,
    role_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    _store(request).remove_role(user_id, role_id)
    return Response(status_code=204)


@router.get("/users/{user_id}/has-role", response_model=HasRoleResponse)
def has_role(
    request: Request,
    user_id: int,
    role: str = Query(min_length=1),
    current_user: User = Depends(require_admin),
) -> HasRoleResponse:
    return HasRoleResponse(user_id=user_id, role=role, has_role=_store(request).user_has_role(user_id, role))


@router.get("/users/{user_id}/has-permission", response_model=HasPermissionResponse)
def has_permission(
    request: Request,
    user_id: int,
    permission: str = Query(min_length=1),
    current_user: User = Depends(require_admin),
) -> HasPermissionResponse:
    allowed = request.app.state.authorizer.has_permission(user_id, permission)
    return HasPermissionResponse(user_id=user_id, permission=permission, has_permission=allowed)
