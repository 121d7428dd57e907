"""
Enrollment API endpoints: multi-shot capture sessions.
"""

import time

import structlog
from fastapi import APIRouter, Depends, Request, Response

from face_auth.api.errors import correlation_id_for, http_error
from face_auth.clients.identity_store import IdentityNotFoundError
from face_auth.models.api_models import (
    EnrollmentOutcomeResponse,
    EnrollmentStartRequest,
    EnrollmentStartResponse,
    IdentityResponse,
    SampleRequest,
    SampleResponse,
    SessionStatusResponse,
)
from face_auth.models.internal_models import SessionState
from face_auth.observability import trace_function, record_enrollment_metrics
from face_auth.services.face_service import (
    EnrollmentError,
    FaceAuthService,
    PolicyError,
    SessionNotFoundError,
    get_face_service,
)
from face_auth.services.vector_math import LengthMismatchError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["enrollment"])


@router.post("/enrollments", response_model=EnrollmentStartResponse, status_code=201)
@trace_function("enrollment_start_endpoint")
async def start_enrollment(
    request: EnrollmentStartRequest,
    http_request: Request,
    response: Response,
    service: FaceAuthService = Depends(get_face_service)
) -> EnrollmentStartResponse:
    """
    Open an enrollment session for a target identity.

    An identity that is already enrolled is reported with an
    ``already_enrolled`` outcome and no session, unless ``overwrite`` is set.
    """
    correlation_id = correlation_id_for(http_request)

    try:
        session_id, outcome = await service.start_enrollment(
            identity_id=request.identityId,
            query=request.query,
            name=request.name,
            overwrite=request.overwrite
        )
    except IdentityNotFoundError as e:
        raise http_error(404, "IdentityNotFoundError", str(e), correlation_id)
    except PolicyError as e:
        raise http_error(400, "PolicyError", str(e), correlation_id)

    capacity = service.config.enrollment_samples

    if outcome is not None:
        response.status_code = 200
        logger.info(
            "Enrollment not started",
            identity_id=outcome.identity.identity_id,
            rejection=outcome.rejection.value,
            correlation_id=correlation_id
        )
        return EnrollmentStartResponse(
            state=SessionState.IDLE.value,
            capacity=capacity,
            outcome=EnrollmentOutcomeResponse.from_outcome(outcome)
        )

    logger.info("Enrollment session opened", session_id=session_id, correlation_id=correlation_id)
    return EnrollmentStartResponse(
        sessionId=session_id,
        state=SessionState.CAPTURING.value,
        capacity=capacity
    )


@router.post("/enrollments/{session_id}/samples", response_model=SampleResponse)
@trace_function("enrollment_sample_endpoint")
async def offer_sample(
    session_id: str,
    request: SampleRequest,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> SampleResponse:
    """
    Offer one captured embedding to an enrollment session.

    The capture that completes the session triggers duplicate detection and,
    when accepted, persists the averaged embedding; the decision is returned
    as ``outcome``.
    """
    correlation_id = correlation_id_for(http_request)
    start_time = time.time()

    try:
        result = await service.offer_sample(
            session_id,
            request.embedding,
            now_ms=request.timestampMs,
            photo_ref=request.photoRef
        )
    except SessionNotFoundError as e:
        raise http_error(404, "SessionNotFoundError", str(e), correlation_id)
    except LengthMismatchError as e:
        raise http_error(422, "LengthMismatchError", str(e), correlation_id)
    except EnrollmentError as e:
        logger.error("Enrollment failed", session_id=session_id, error=str(e), correlation_id=correlation_id)
        raise http_error(500, "EnrollmentError", str(e), correlation_id)

    if result.outcome is not None:
        outcome = result.outcome
        record_enrollment_metrics(
            accepted=outcome.accepted,
            processing_time=time.time() - start_time,
            identity_id=outcome.identity.identity_id,
            rejection=outcome.rejection.value if outcome.rejection else None
        )
        logger.info(
            "Enrollment session finished",
            session_id=session_id,
            identity_id=outcome.identity.identity_id,
            accepted=outcome.accepted,
            rejection=outcome.rejection.value if outcome.rejection else None,
            correlation_id=correlation_id
        )

    return SampleResponse.from_result(result)


@router.get("/enrollments/{session_id}", response_model=SessionStatusResponse)
async def get_enrollment_status(
    session_id: str,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> SessionStatusResponse:
    try:
        status = service.enrollment_status(session_id)
    except SessionNotFoundError as e:
        raise http_error(404, "SessionNotFoundError", str(e), correlation_id_for(http_request))

    return SessionStatusResponse(
        sessionId=status.session_id,
        state=status.state.value,
        captured=status.captured,
        capacity=status.capacity,
        target=IdentityResponse.from_identity(status.target) if status.target else None
    )


@router.delete("/enrollments/{session_id}", status_code=204)
async def cancel_enrollment(
    session_id: str,
    http_request: Request,
    service: FaceAuthService = Depends(get_face_service)
) -> Response:
    """Cancel an enrollment session; partial captures are discarded."""
    correlation_id = correlation_id_for(http_request)

    try:
        service.cancel_enrollment(session_id)
    except SessionNotFoundError as e:
        raise http_error(404, "SessionNotFoundError", str(e), correlation_id)

    logger.info("Enrollment session cancelled", session_id=session_id, correlation_id=correlation_id)
    return Response(status_code=204)
