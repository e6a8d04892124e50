"""
api/routes/v1/users.py -- Current-user endpoint.

Routes:
  GET /api/v1/users/me  -- sanitized profile of the caller (requires auth)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import UserOut, success_body
from auth.dependencies import require_auth
from auth.models import User

router = APIRouter()


@router.get("/users/me")
def me(current_user: User = Depends(require_auth)) -> dict:
    """Return the authenticated user without credential fields."""
    return success_body(UserOut.from_user(current_user))
