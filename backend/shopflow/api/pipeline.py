"""
Pipeline API — trigger and inspect discovery pipeline runs.

POST /api/pipeline/run
  Start a run in the background (202), or 409 if one is already active
GET /api/pipeline/status
  Whether a run is active, plus the last completed run
GET /api/pipeline/history
  Past runs, newest first
GET /api/pipeline/runs/{run_id}
  Detail for a specific run including its log
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from shopflow.api.deps import get_pipeline
from shopflow.models.pipeline_run import RUN_TYPES
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator


class PipelineRunRequest(BaseModel):
    type: str = Field("full", description=f"One of: {', '.join(RUN_TYPES)}")
    max_items: int | None = Field(None, ge=1, le=500, description="Max items per stage")


class PipelineRunAccepted(BaseModel):
    run_id: str
    status: str
    type: str
    triggered_by: str


router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


async def start_pipeline_run(
    body: PipelineRunRequest,
    triggered_by: str,
    pipeline: PipelineOrchestrator,
) -> PipelineRunAccepted:
    if body.type not in RUN_TYPES:
        raise HTTPException(status_code=422, detail=f"Unknown run type: {body.type}")
    config = {"max_items": body.max_items} if body.max_items else None
    run = await pipeline.start_run(run_type=body.type, triggered_by=triggered_by, config=config)
    return PipelineRunAccepted(
        run_id=run.run_id, status=run.status, type=run.type, triggered_by=run.triggered_by,
    )


@router.post("/run", response_model=PipelineRunAccepted, status_code=202)
async def run_pipeline(
    body: PipelineRunRequest | None = None,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
):
    return await start_pipeline_run(body or PipelineRunRequest(), "manual", pipeline)


@router.get("/status")
async def pipeline_status(pipeline: PipelineOrchestrator = Depends(get_pipeline)):
    return await pipeline.get_status()


@router.get("/history")
async def pipeline_history(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
):
    runs = await pipeline.list_runs(limit=limit, offset=offset)
    return {"runs": [r.summary() for r in runs], "count": len(runs)}


@router.get("/runs/{run_id}")
async def pipeline_run_detail(run_id: str, pipeline: PipelineOrchestrator = Depends(get_pipeline)):
    run = await pipeline.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Pipeline run {run_id} not found")
    return {**run.summary(), "config": run.config, "logs": run.logs}
