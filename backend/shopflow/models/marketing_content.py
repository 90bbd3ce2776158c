from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from shopflow.database import Base, JSONType

CONTENT_STATUSES = ("generating", "pending_approval", "approved", "rejected", "posted", "failed")
OPEN_CONTENT_STATUSES = ("generating", "pending_approval", "approved")


class MarketingContent(Base):
    __tablename__ = "marketing_content"

    id: Mapped[int] = mapped_column(primary_key=True)
    catalog_item_id: Mapped[int] = mapped_column(ForeignKey("catalog_items.id"), index=True)
    product_title: Mapped[str] = mapped_column(String(300))
    product_image: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    product_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    product_category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="generating", index=True)
    caption: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # instagram, facebook, pinterest, hashtags, cta
    image: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # url, prompt, status, error
    generation_cost: Mapped[float] = mapped_column(Float, default=0.0)
    post_results: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pipeline_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    regeneration_count: Mapped[int] = mapped_column(Integer, default=0)
    regenerated_from: Mapped[int | None] = mapped_column(ForeignKey("marketing_content.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "catalog_item_id": self.catalog_item_id,
            "product_title": self.product_title,
            "product_image": self.product_image,
            "product_price": self.product_price,
            "product_category": self.product_category,
            "status": self.status,
            "caption": self.caption,
            "image": self.image,
            "generation_cost": self.generation_cost,
            "post_results": self.post_results,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "pipeline_run_id": self.pipeline_run_id,
            "regeneration_count": self.regeneration_count,
            "regenerated_from": self.regenerated_from,
        }
