"""
Recognition API endpoint: match a live probe against enrolled identities.
"""

import time

import structlog
from fastapi import APIRouter, Depends, Request

from face_auth.api.errors import correlation_id_for, http_error
from face_auth.models.api_models import RecognitionRequest, RecognitionResponse
from face_auth.models.internal_models import MatchMode
from face_auth.observability import trace_function, record_recognition_metrics
from face_auth.services.face_service import FaceAuthService, get_face_service
from face_auth.services.vector_math import LengthMismatchError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["recognition"])


@router.post("/recognize", response_model=RecognitionResponse)
@trace_function("recognition_endpoint")
async def recognize(
    request: RecognitionRequest,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> RecognitionResponse:
    """
    Recognize a live probe embedding.

    Unknown faces and an empty roster are normal results (``known=false``);
    ``enrolledCount`` of 0 means nobody is enrolled yet.
    """
    correlation_id = correlation_id_for(http_request)
    start_time = time.time()

    try:
        match = await service.recognize(
            request.embedding,
            mode=MatchMode(request.mode) if request.mode else None
        )
    except LengthMismatchError as e:
        raise http_error(422, "LengthMismatchError", str(e), correlation_id)

    record_recognition_metrics(
        known=match.accepted,
        processing_time=time.time() - start_time,
        distance=match.distance,
        mode=match.mode.value
    )

    logger.info(
        "Recognition completed",
        known=match.accepted,
        identity_id=match.identity.identity_id if match.identity else None,
        similarity=match.similarity,
        distance=match.distance,
        enrolled_count=match.candidates_scanned,
        correlation_id=correlation_id
    )

    return RecognitionResponse.from_match(match)
