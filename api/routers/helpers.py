"""HTTP translation shared by the job routers."""

import logging

from fastapi import HTTPException

from api.models.schemas import JobStartResponse
from api.services.job_orchestrator import GenerationRequest, JobOrchestrator
from common.errors import AuthorizationError, ProviderCallError

logger = logging.getLogger(__name__)


async def start_job(orchestrator: JobOrchestrator, request: GenerationRequest) -> JobStartResponse:
    """Start a job and map the synchronous failures to HTTP errors.

    Engine failures never surface here; they are only visible on the next
    status read.
    """
    try:
        job, created = await orchestrator.start(request)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except ProviderCallError as exc:
        logger.warning("Provider call failed while starting %s job: %s", request.kind.value, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except Exception as e:
        logger.exception("Failed to start %s job", request.kind.value)
        raise HTTPException(status_code=500, detail=f"Failed to start generation: {str(e)}")

    if created:
        message = "Generation started"
    elif job.is_in_flight:
        message = "Generation already in progress"
    else:
        message = "Existing result returned"
    return JobStartResponse(
        status="generating" if job.is_in_flight else job.status.value,
        job_id=job.job_id,
        message=message,
    )
