"""
API endpoints for managing automation (auto-score) rules.

Every route answers ``{"success": bool, "data": ..., "message": ...}``;
rejected input is reported in the envelope rather than as an HTTP error.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ...core.auth import ADMIN_ROLE, require_roles
from ...core.errors import RuleValidationError
from ...schemas.automation import ApiResponse, RuleCreate, RuleUpdate, ToggleRequest
from ...services.automation import AutoScoreService

router = APIRouter(
    prefix="/api/v1/auto-score",
    tags=["auto-score"],
    dependencies=[Depends(require_roles(ADMIN_ROLE))],
)


def get_auto_score(request: Request) -> AutoScoreService:
    service = getattr(request.app.state, "auto_score", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Auto score engine is not running")
    return service


def _rules_payload(service: AutoScoreService) -> list[dict]:
    return [rule.model_dump(mode="json", by_alias=True) for rule in service.get_rules()]


@router.get("/rules", response_model=ApiResponse)
async def list_rules(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    return ApiResponse(success=True, data=_rules_payload(service))


@router.post("/rules", response_model=ApiResponse)
async def add_rule(payload: RuleCreate, service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    try:
        rule_id = await service.add_rule(payload)
    except RuleValidationError as exc:
        return ApiResponse(success=False, message=exc.message)
    return ApiResponse(success=True, data=rule_id)


@router.put("/rules/{rule_id}", response_model=ApiResponse)
async def update_rule(
    rule_id: int,
    payload: dict,
    service: AutoScoreService = Depends(get_auto_score),
) -> ApiResponse:
    try:
        update = RuleUpdate.model_validate({**payload, "id": rule_id})
        ok = await service.update_rule(update)
    except RuleValidationError as exc:
        return ApiResponse(success=False, message=exc.message)
    except ValueError as exc:
        return ApiResponse(success=False, message=str(exc))
    return ApiResponse(success=ok, data=ok, message=None if ok else "Rule not found")


@router.delete("/rules/{rule_id}", response_model=ApiResponse)
async def delete_rule(rule_id: int, service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    ok = await service.delete_rule(rule_id)
    return ApiResponse(success=ok, data=ok, message=None if ok else "Rule not found")


@router.post("/rules/{rule_id}/toggle", response_model=ApiResponse)
async def toggle_rule(
    rule_id: int,
    payload: ToggleRequest,
    service: AutoScoreService = Depends(get_auto_score),
) -> ApiResponse:
    ok = await service.toggle_rule(rule_id, payload.enabled)
    return ApiResponse(success=ok, data=ok, message=None if ok else "Rule not found")


@router.get("/status", response_model=ApiResponse)
async def get_status(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    return ApiResponse(success=True, data=service.get_status())


@router.get("/schedule", response_model=ApiResponse)
async def get_schedule(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    return ApiResponse(success=True, data=service.get_schedule())


@router.post("/restart", response_model=ApiResponse)
async def restart(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    await service.restart()
    return ApiResponse(success=True, data=service.get_status())


@router.get("/triggers", response_model=ApiResponse)
async def list_triggers(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    return ApiResponse(success=True, data=service.trigger_options())


@router.get("/actions", response_model=ApiResponse)
async def list_actions(service: AutoScoreService = Depends(get_auto_score)) -> ApiResponse:
    return ApiResponse(success=True, data=service.action_options())
