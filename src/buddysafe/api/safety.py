from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from buddysafe.api.deps import provide_orchestrator, require_parent_auth
from buddysafe.safety.base import SafetyContext, SafetyVerdict
from buddysafe.safety.orchestrator import ValidationOrchestrator

router = APIRouter(prefix="/api/safety", tags=["safety"])


class ValidateRequest(BaseModel):
    message: str
    context: SafetyContext


class BatchValidateRequest(BaseModel):
    items: list[ValidateRequest] = Field(default_factory=list)
    parallel: bool = True


def _verdict_payload(
    orchestrator: ValidationOrchestrator, verdict: SafetyVerdict, child_age: int
) -> dict[str, Any]:
    payload = verdict.to_dict()
    payload["response_text"] = orchestrator.response_for(verdict, child_age)
    return payload


@router.post("/validate")
async def validate_message(
    body: ValidateRequest,
    orchestrator: ValidationOrchestrator = Depends(provide_orchestrator),
    _: str = Depends(require_parent_auth),
) -> dict[str, Any]:
    verdict = await orchestrator.validate(body.message, body.context)
    return _verdict_payload(orchestrator, verdict, body.context.child_age)


@router.post("/validate/batch")
async def validate_batch(
    body: BatchValidateRequest,
    orchestrator: ValidationOrchestrator = Depends(provide_orchestrator),
    _: str = Depends(require_parent_auth),
) -> dict[str, Any]:
    verdicts = await orchestrator.validate_batch(
        [(item.message, item.context) for item in body.items],
        parallel=body.parallel,
    )
    return {
        "results": [
            _verdict_payload(orchestrator, verdict, item.context.child_age)
            for item, verdict in zip(body.items, verdicts)
        ]
    }


@router.get("/metrics")
def get_metrics(
    orchestrator: ValidationOrchestrator = Depends(provide_orchestrator),
    _: str = Depends(require_parent_auth),
) -> dict[str, Any]:
    return orchestrator.get_metrics()
