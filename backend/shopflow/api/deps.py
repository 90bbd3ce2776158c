"""
API Dependencies — service lookups.

The orchestrators are built once in the composition root
(`shopflow.main.build_services`) and stored on `app.state`; routes get them
through these dependencies so tests can swap in their own instances.
"""

from fastapi import Request

from shopflow.services.marketing_orchestrator import MarketingOrchestrator
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator


def get_pipeline(request: Request) -> PipelineOrchestrator:
    return request.app.state.pipeline


def get_marketing(request: Request) -> MarketingOrchestrator:
    return request.app.state.marketing
