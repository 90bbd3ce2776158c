"""
Marketing API — social posting, activity and the content approval queue.

GET  /api/marketing/status                      worker, queue and channel status
GET  /api/marketing/social-history              recent broadcasts
GET  /api/marketing/activity                    activity feed
POST /api/marketing/post-now                    post one product now, bypassing cooldowns
POST /api/marketing/post-all                    queue every listed product for posting
GET  /api/marketing/content-queue               content items, optionally by status
GET  /api/marketing/content-stats               counts per status + generation cost
POST /api/marketing/content/{id}/approve        approve and post immediately
POST /api/marketing/content/{id}/reject         reject with an optional reason
POST /api/marketing/content/{id}/regenerate     supersede and generate again
POST /api/marketing/generate                    generate content for given or pending products
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from shopflow.api.deps import get_marketing
from shopflow.models.marketing_content import CONTENT_STATUSES
from shopflow.services.marketing_orchestrator import MarketingOrchestrator


class PostNowRequest(BaseModel):
    product_id: int


class PostAllRequest(BaseModel):
    limit: int = Field(50, ge=1, le=500)


class RejectRequest(BaseModel):
    reason: str = Field("", max_length=500)


class GenerateRequest(BaseModel):
    product_ids: list[int] = Field(default_factory=list, description="Empty = listed products without content")
    limit: int = Field(10, ge=1, le=100)


router = APIRouter(prefix="/api/marketing", tags=["marketing"])


@router.get("/status")
async def marketing_status(marketing: MarketingOrchestrator = Depends(get_marketing)):
    return marketing.get_status()


@router.get("/social-history")
async def social_history(
    limit: int = Query(20, ge=1, le=100),
    marketing: MarketingOrchestrator = Depends(get_marketing),
):
    return {"history": marketing.get_social_history(limit)}


@router.get("/activity")
async def activity_feed(
    limit: int = Query(50, ge=1, le=200),
    marketing: MarketingOrchestrator = Depends(get_marketing),
):
    return {"activity": marketing.get_activity_feed(limit)}


@router.post("/post-now")
async def post_now(body: PostNowRequest, marketing: MarketingOrchestrator = Depends(get_marketing)):
    product = await marketing.load_product(body.product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product {body.product_id} not found")
    results = await marketing.force_post_product(product)
    return {"product_id": product.id, "results": {name: r.to_dict() for name, r in results.items()}}


@router.post("/post-all")
async def post_all(body: PostAllRequest | None = None, marketing: MarketingOrchestrator = Depends(get_marketing)):
    queued = await marketing.queue_all_listed(limit=(body or PostAllRequest()).limit)
    return {"queued": queued, "queue_length": marketing.get_status()["queue_length"]}


@router.get("/content-queue")
async def content_queue(
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    marketing: MarketingOrchestrator = Depends(get_marketing),
):
    if status and status not in CONTENT_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown content status: {status}")
    return {"items": await marketing.get_content_queue(status=status, limit=limit)}


@router.get("/content-stats")
async def content_stats(marketing: MarketingOrchestrator = Depends(get_marketing)):
    return await marketing.get_content_queue_stats()


@router.post("/content/{content_id}/approve")
async def approve_content(content_id: int, marketing: MarketingOrchestrator = Depends(get_marketing)):
    return await marketing.approve_content(content_id)


@router.post("/content/{content_id}/reject")
async def reject_content(
    content_id: int,
    body: RejectRequest | None = None,
    marketing: MarketingOrchestrator = Depends(get_marketing),
):
    return await marketing.reject_content(content_id, (body or RejectRequest()).reason)


@router.post("/content/{content_id}/regenerate")
async def regenerate_content(content_id: int, marketing: MarketingOrchestrator = Depends(get_marketing)):
    return await marketing.regenerate_content(content_id)


@router.post("/generate")
async def generate_content(body: GenerateRequest | None = None, marketing: MarketingOrchestrator = Depends(get_marketing)):
    body = body or GenerateRequest()
    if not body.product_ids:
        return await marketing.generate_pending_content(limit=body.limit)

    products = []
    for product_id in body.product_ids[: body.limit]:
        product = await marketing.load_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
        products.append(product)
    return await marketing.generate_content_for(products)
