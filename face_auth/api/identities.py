"""
Identity API endpoints: roster provisioning, listing and search.
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Request

from face_auth.api.errors import correlation_id_for, http_error
from face_auth.clients.identity_store import IdentityExistsError, IdentityNotFoundError
from face_auth.models.api_models import IdentityCreateRequest, IdentityResponse
from face_auth.services.face_service import FaceAuthService, get_face_service

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["identities"])


@router.get("/identities", response_model=List[IdentityResponse])
async def list_identities(
    q: Optional[str] = None,
    service: FaceAuthService = Depends(get_face_service)
) -> List[IdentityResponse]:
    """
    List identities with their enrollment status.

    Args:
        q: Optional search text matched against id and name
    """
    identities = await service.search_identities(q) if q else await service.list_identities()
    return [IdentityResponse.from_identity(identity) for identity in identities]


@router.post("/identities", response_model=IdentityResponse, status_code=201)
async def create_identity(
    request: IdentityCreateRequest,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> IdentityResponse:
    """Provision a roster identity awaiting enrollment."""
    correlation_id = correlation_id_for(http_request)

    try:
        identity = await service.create_identity(request.id, request.name)
    except IdentityExistsError as e:
        raise http_error(409, "IdentityExistsError", str(e), correlation_id)

    logger.info("Identity created", identity_id=identity.identity_id, correlation_id=correlation_id)
    return IdentityResponse.from_identity(identity)


@router.get("/identities/{identity_id}", response_model=IdentityResponse)
async def get_identity(
    identity_id: str,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> IdentityResponse:
    try:
        identity = await service.get_identity(identity_id)
    except IdentityNotFoundError as e:
        raise http_error(404, "IdentityNotFoundError", str(e), correlation_id_for(http_request))

    return IdentityResponse.from_identity(identity)
