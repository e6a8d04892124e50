"""
api/routes/v1/api_keys.py -- API key management for the caller's organization.

Routes:
  POST   /api/v1/api-keys           -- create a key; plaintext returned once
  GET    /api/v1/api-keys           -- list keys (live and revoked), newest first
  DELETE /api/v1/api-keys/{key_id}  -- revoke a key

All routes require a user principal. Keys belong to the organization the
user owns; another organization's key id answers 404, not 403, so key ids
cannot be enumerated.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import ApiKeyCreate, ApiKeyCreatedOut, ApiKeyOut, MessageOut, success_body
from auth.dependencies import get_auth_service, require_auth
from auth.models import User

router = APIRouter()


@router.post("/api-keys", status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: User = Depends(require_auth),
) -> JSONResponse:
    api_key, secret = get_auth_service(request).create_api_key(current_user, body.name, body.scopes)
    resp = JSONResponse(
        status_code=201,
        content=success_body(ApiKeyCreatedOut(api_key=ApiKeyOut.from_api_key(api_key), secret=secret)),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/api-keys")
def list_api_keys(request: Request, current_user: User = Depends(require_auth)) -> dict:
    keys = get_auth_service(request).list_api_keys(current_user)
    return success_body([ApiKeyOut.from_api_key(k) for k in keys])


@router.delete("/api-keys/{key_id}")
def revoke_api_key(request: Request, key_id: str, current_user: User = Depends(require_auth)) -> dict:
    get_auth_service(request).revoke_api_key(current_user, key_id)
    return success_body(MessageOut(message="API key revoked"))
