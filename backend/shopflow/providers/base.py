"""
Provider contracts.

The pipeline and marketing orchestrators depend only on these shapes. Each
concrete adapter in this package wraps one external API; tests substitute
in-memory fakes that satisfy the same Protocols.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from shopflow.models import CatalogItem


# ── Value objects ────────────────────────────────────────────────────────────

@dataclass
class DiscoveredItem:
    name: str
    cost_estimate: float | None
    source_id: str
    sales_proxy: int = 0
    category: str | None = None
    image: str | None = None
    source: str = "trendscan"


@dataclass
class SourcingResult:
    sourced: int = 0


@dataclass
class EnrichmentResult:
    enriched: int = 0


@dataclass
class ListingResult:
    listing_id: str
    slug: str = ""


@dataclass
class CaptionBundle:
    instagram: str
    facebook: str
    pinterest: str
    hashtags: list[str] = field(default_factory=list)
    cta: str = ""
    image_prompt: str = ""

    def captions(self) -> dict:
        return {
            "instagram": self.instagram,
            "facebook": self.facebook,
            "pinterest": self.pinterest,
            "hashtags": self.hashtags,
            "cta": self.cta,
        }


@dataclass
class GeneratedImage:
    url: str
    cost: float = 0.0


@dataclass
class ProductSnapshot:
    """Detached view of a catalog item, safe to pass between sessions and tasks."""

    id: int
    title: str
    price: float | None = None
    compare_price: float | None = None
    category: str | None = None
    description: str = ""
    image_url: str | None = None

    @classmethod
    def from_item(cls, item: CatalogItem) -> "ProductSnapshot":
        return cls(
            id=item.id,
            title=item.title,
            price=item.selling_price,
            compare_price=item.compare_price,
            category=item.category,
            description=item.description or item.short_description or "",
            image_url=item.image_url,
        )


@dataclass
class SocialPost:
    """What a channel publishes: product facts plus per-channel captions."""

    item_id: int
    title: str
    image_url: str | None = None
    price: float | None = None
    category: str | None = None
    captions: dict[str, str] = field(default_factory=dict)
    hashtags: list[str] = field(default_factory=list)

    def caption_for(self, channel: str) -> str:
        text = self.captions.get(channel) or self.title
        if channel == "instagram" and self.hashtags:
            text += "\n\n" + " ".join(f"#{h}" for h in self.hashtags)
        return text


# ── Provider protocols ───────────────────────────────────────────────────────

class DiscoveryClient(Protocol):
    async def scan(self) -> list[DiscoveredItem]: ...


class SourcingClient(Protocol):
    async def auto_source(self, max_items: int) -> SourcingResult: ...


class EnrichmentClient(Protocol):
    async def bulk_enrich(self, max_items: int) -> EnrichmentResult: ...


class ListingClient(Protocol):
    async def create_listing(self, item: CatalogItem, run_id: str) -> ListingResult: ...


class BookkeepingClient(Protocol):
    async def sync_catalog(self, limit: int) -> int: ...


class ContentGenerator(Protocol):
    async def generate_captions_and_image_prompt(self, product: ProductSnapshot) -> CaptionBundle: ...

    async def generate_image(self, prompt: str) -> GeneratedImage: ...


class SocialCopywriter(Protocol):
    async def write(self, product: ProductSnapshot, channel: str) -> str: ...


@runtime_checkable
class SocialChannel(Protocol):
    name: str

    @property
    def enabled(self) -> bool: ...

    async def publish(self, post: SocialPost, caption: str) -> str:
        """Publish and return the platform post id. Raises PublishError."""
        ...


class EmailSync(Protocol):
    async def sync_product(self, product: ProductSnapshot) -> None: ...

    async def track_new_product(self, product: ProductSnapshot) -> None: ...


class AlertNotifier(Protocol):
    async def notify(self, event_type: str, payload: dict) -> None:
        """Fire-and-forget. Implementations swallow and log their own failures."""
        ...


class TextProvider(Protocol):
    name: str

    @property
    def enabled(self) -> bool: ...

    async def invoke(self, prompt: str, max_tokens: int = 800) -> str: ...
