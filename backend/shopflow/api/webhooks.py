"""
Webhook triggers for external automation.

POST /api/webhooks/pipeline        start a run (triggered_by=webhook)
POST /api/webhooks/agent-command   start a run on behalf of an ops agent
"""

from fastapi import APIRouter, Depends

from shopflow.api.deps import get_pipeline
from shopflow.api.pipeline import PipelineRunAccepted, PipelineRunRequest, start_pipeline_run
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/pipeline", response_model=PipelineRunAccepted, status_code=202)
async def pipeline_webhook(
    body: PipelineRunRequest | None = None,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
):
    return await start_pipeline_run(body or PipelineRunRequest(), "webhook", pipeline)


@router.post("/agent-command", response_model=PipelineRunAccepted, status_code=202)
async def agent_command(
    body: PipelineRunRequest | None = None,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
):
    return await start_pipeline_run(body or PipelineRunRequest(), "agent-command", pipeline)
