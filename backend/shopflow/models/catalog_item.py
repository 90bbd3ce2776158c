from datetime import datetime

from sqlalchemy import String, Integer, Float, Boolean, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shopflow.database import Base, JSONType

# Statuses the auto-list sweep treats as "not yet definitively listed"
UNLISTED_STATUSES = ("", "draft", "discovered", "analyzed")


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(300), index=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    source: Mapped[str] = mapped_column(String(50), default="")
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    sales_proxy: Mapped[int] = mapped_column(Integer, default=0)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Commercial
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    selling_price: Mapped[float] = mapped_column(Float, default=0.0)
    compare_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    margin_percent: Mapped[float] = mapped_column(Float, default=0.0)
    supplier_url: Mapped[str] = mapped_column(String(1000), default="")
    supplier_ref: Mapped[str] = mapped_column(String(100), default="")

    # AI enrichment
    description: Mapped[str] = mapped_column(Text, default="")
    short_description: Mapped[str] = mapped_column(String(500), default="")
    seo_title: Mapped[str] = mapped_column(String(120), default="")
    seo_description: Mapped[str] = mapped_column(String(300), default="")
    tags: Mapped[list] = mapped_column(JSONType, default=list)

    # Storefront
    status: Mapped[str | None] = mapped_column(String(20), nullable=True, default="discovered", index=True)
    listing_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    listed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Pipeline sub-record
    discovered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    research_score: Mapped[int] = mapped_column(Integer, default=0)
    approved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str] = mapped_column(String(200), default="")
    run_id: Mapped[str] = mapped_column(String(64), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
