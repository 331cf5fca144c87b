"""
SQL Judge API Routes
====================
Endpoints for running and grading SQL submissions in per-session sandboxes.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Request, status

from .grading_service import GradingService
from .query_validator import SqlValidationError
from .result_comparator import ExpectedOutputError
from .schemas import ExecuteRequest, SubmitRequest, ResetRequest, SeedRequest, SchemaRequest

logger = logging.getLogger(__name__)

# Create router
judge_router = APIRouter(prefix="/api", tags=["judge"])


def get_grading_service(request: Request) -> GradingService:
    return request.app.state.grading_service


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Internal error: {str(e)}"
    )


@judge_router.post("/execute", response_model=Dict[str, Any])
async def execute_sql(
    payload: ExecuteRequest,
    service: GradingService = Depends(get_grading_service)
):
    """Run SQL in the session sandbox without grading; the sandbox stays alive"""
    try:
        return await service.execute(payload.question_id, payload.code, payload.group_id)
    except SqlValidationError as e:
        raise _bad_request(e)
    except Exception as e:
        raise _internal_error("execute SQL", e)


@judge_router.post("/submit", response_model=Dict[str, Any])
async def submit_sql(
    payload: SubmitRequest,
    service: GradingService = Depends(get_grading_service)
):
    """Run SQL, grade it against the expected output and discard the sandbox"""
    try:
        return await service.submit(
            payload.question_id, payload.code, payload.expected_output, payload.group_id
        )
    except (SqlValidationError, ExpectedOutputError) as e:
        raise _bad_request(e)
    except Exception as e:
        raise _internal_error("submit SQL", e)


@judge_router.post("/reset", response_model=Dict[str, Any])
async def reset_question(
    payload: ResetRequest,
    service: GradingService = Depends(get_grading_service)
):
    """Destroy the session sandbox if there is one"""
    try:
        return await service.reset(payload.question_id, payload.group_id)
    except Exception as e:
        raise _internal_error("reset sandbox", e)


@judge_router.post("/seed", response_model=Dict[str, Any])
async def seed_group(
    payload: SeedRequest,
    service: GradingService = Depends(get_grading_service)
):
    """Register a seed script for a group"""
    try:
        return service.seed(payload.seed_sql, payload.group_id)
    except SqlValidationError as e:
        raise _bad_request(e)
    except Exception as e:
        raise _internal_error("register seed", e)


@judge_router.post("/schema", response_model=Dict[str, Any])
async def get_schema(
    payload: SchemaRequest,
    service: GradingService = Depends(get_grading_service)
):
    """Describe tables, columns and current rows of a session (or seed group)"""
    try:
        return await service.schema(payload.question_id, payload.group_id)
    except Exception as e:
        raise _internal_error("describe schema", e)
