"""
api/routes/v1/organizations.py -- Organization lookup for API-key callers.

Routes:
  GET /api/v1/organization  -- the organization the presented API key belongs to

A user access token does not satisfy this route; only an organization
principal resolved from an API key does.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import OrganizationOut, success_body
from auth.dependencies import get_auth_service, require_api_key

router = APIRouter()


@router.get("/organization")
def current_organization(request: Request, organization_id: str = Depends(require_api_key)) -> dict:
    organization = get_auth_service(request).get_organization(organization_id)
    return success_body(OrganizationOut.from_organization(organization))
