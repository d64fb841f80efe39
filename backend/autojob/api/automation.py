"""
Automation endpoints.

Start/stop the user's automation job, trigger a run, read its status and
adjust its schedule and search settings.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from autojob.api.auth import get_current_user
from autojob.exceptions import (
    AlreadyActiveError,
    AutomationNotFoundError,
    NotActiveError,
    NotConnectedError,
)
from autojob.models.application import Application
from autojob.models.automation_job import AutomationJob
from autojob.models.user import User
from autojob.schemas.automation import (
    ApplicationListResponse,
    ApplicationResponse,
    AutomationJobResponse,
    AutomationStatusResponse,
    RunNowResponse,
    ScheduleConfig,
    SearchSettings,
    StartAutomationRequest,
    UpdateAutomationSettingsRequest,
)
from autojob.services.automation import AutomationService, job_statistics

logger = logging.getLogger(__name__)
router = APIRouter()


def get_automation_service(request: Request) -> AutomationService:
    """The service instance built at startup."""
    return request.app.state.automation


def job_to_response(job: AutomationJob) -> AutomationJobResponse:
    return AutomationJobResponse(
        job_id=str(job.id),
        user_id=str(job.user_id),
        status=job.status,
        schedule=ScheduleConfig.model_validate(job.schedule or {}),
        search_settings=SearchSettings.model_validate(job.search_settings or {}),
        stats=job_statistics(job),
        last_run=job.last_run,
        next_run=job.next_run,
        last_error=job.last_error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def application_to_response(application: Application) -> ApplicationResponse:
    return ApplicationResponse(
        id=str(application.id),
        vacancy_id=application.vacancy_id,
        vacancy_title=application.vacancy_title,
        company_name=application.company_name,
        status=application.status,
        match_score=application.match_score,
        applied_at=application.applied_at,
        external_application_id=application.external_application_id,
        error_message=application.error_message,
    )


@router.post("/start", response_model=AutomationJobResponse)
async def start_automation(
    request: Optional[StartAutomationRequest] = None,
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """
    Start automatic job search for the current user.

    Requires a connected job board account. Creates the job on first start,
    reactivates a paused or disconnected one afterwards.
    """
    try:
        job = await service.start_automation(current_user.id, request)
    except NotConnectedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AlreadyActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return job_to_response(job)


@router.post("/stop", response_model=AutomationJobResponse)
async def stop_automation(
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """Pause automation. A run already in progress is allowed to finish."""
    try:
        job = await service.stop_automation(current_user.id)
    except AutomationNotFoundError:
        raise HTTPException(status_code=404, detail="Automation not found. Start it first.")
    return job_to_response(job)


@router.get("/status", response_model=AutomationStatusResponse)
async def get_status(
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    try:
        return await service.get_status(current_user.id)
    except AutomationNotFoundError:
        raise HTTPException(status_code=404, detail="Automation not found. Start it first.")


@router.post("/run-now", response_model=RunNowResponse, status_code=202)
async def run_now(
    response: Response,
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """
    Run the automation once, right now.

    Shares the daily caps and rate limits of scheduled runs. Returns 409 when a
    run is already in progress for this job.
    """
    try:
        result = await service.run_now(current_user.id)
    except NotActiveError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.accepted:
        response.status_code = 409
        return RunNowResponse(
            accepted=False,
            job_id=str(result.job_id),
            message="A run is already in progress",
        )
    return RunNowResponse(accepted=True, job_id=str(result.job_id), message="Run started")


@router.put("/settings", response_model=AutomationJobResponse)
async def update_settings(
    request: UpdateAutomationSettingsRequest,
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    try:
        job = await service.update_settings(current_user.id, request)
    except AutomationNotFoundError:
        raise HTTPException(status_code=404, detail="Automation not found. Start it first.")
    return job_to_response(job)


@router.get("/applications", response_model=ApplicationListResponse)
async def list_applications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    applications, total = await service.list_applications(current_user.id, limit=limit, offset=offset)
    return ApplicationListResponse(
        applications=[application_to_response(a) for a in applications],
        total=total,
    )
