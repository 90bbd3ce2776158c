"""In-memory stand-ins for the external providers."""

from sqlalchemy import select

from shopflow.errors import ContentGenerationError, PublishError
from shopflow.models import CatalogItem
from shopflow.providers.base import (
    CaptionBundle, DiscoveredItem, EnrichmentResult, GeneratedImage, ListingResult,
    ProductSnapshot, SocialPost, SourcingResult,
)
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator


def discovered(name="Wireless Charging Desk Lamp", cost=8.0, source_id="cj-1", sales=2000,
               category="Home & Electronics", image="https://img.example/1.jpg") -> DiscoveredItem:
    return DiscoveredItem(
        name=name, cost_estimate=cost, source_id=source_id, sales_proxy=sales,
        category=category, image=image, source="cj_dropshipping",
    )


class FakeDiscovery:
    def __init__(self, items=None, error: Exception | None = None):
        self.items = items or []
        self.error = error
        self.calls = 0

    async def scan(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.items)


class FakeSourcing:
    """Gives every unsourced item a supplier URL."""

    def __init__(self, session_factory, error: Exception | None = None):
        self.session_factory = session_factory
        self.error = error
        self.calls = 0

    async def auto_source(self, max_items):
        self.calls += 1
        if self.error:
            raise self.error
        async with self.session_factory() as session:
            result = await session.execute(
                select(CatalogItem).where(CatalogItem.supplier_url == "").limit(max_items)
            )
            items = list(result.scalars())
            for item in items:
                item.supplier_url = f"https://supplier.example/{item.source_id}"
            await session.commit()
        return SourcingResult(sourced=len(items))


class FakeEnrichment:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def bulk_enrich(self, max_items):
        self.calls += 1
        if self.error:
            raise self.error
        return EnrichmentResult(enriched=0)


class FakeListing:
    def __init__(self, fail_titles=()):
        self.fail_titles = set(fail_titles)
        self.listed: list[str] = []

    async def create_listing(self, item, run_id):
        if item.title in self.fail_titles:
            raise RuntimeError("storefront rejected product")
        self.listed.append(item.title)
        return ListingResult(listing_id=f"woo-{item.id}", slug=item.title.lower().replace(" ", "-"))


class FakeBookkeeping:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def sync_catalog(self, limit):
        self.calls += 1
        if self.error:
            raise self.error
        return 0


class RecordingAlerts:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def notify(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self):
        return [e for e, _ in self.events]


class RecordingMarketing:
    def __init__(self):
        self.live: list[ProductSnapshot] = []

    async def on_product_live(self, product):
        self.live.append(product)


class FakeEmail:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.synced: list[int] = []
        self.tracked: list[int] = []

    async def sync_product(self, product):
        if self.error:
            raise self.error
        self.synced.append(product.id)

    async def track_new_product(self, product):
        self.tracked.append(product.id)


class FakeContentGenerator:
    def __init__(self, fail_captions=False, fail_image=False):
        self.fail_captions = fail_captions
        self.fail_image = fail_image
        self.caption_calls = 0

    async def generate_captions_and_image_prompt(self, product):
        self.caption_calls += 1
        if self.fail_captions:
            raise ContentGenerationError("Failed to parse caption JSON")
        return CaptionBundle(
            instagram=f"IG: {product.title}",
            facebook=f"FB: {product.title}",
            pinterest=f"PIN: {product.title}",
            hashtags=["shopflow", "trending"],
            cta="Shop now",
            image_prompt=f"Lifestyle photo of {product.title}",
        )

    async def generate_image(self, prompt):
        if self.fail_image:
            raise ContentGenerationError("fal.ai generation timed out after 120s")
        return GeneratedImage(url="https://fal.example/image.jpg", cost=0.04)


class FakeCopywriter:
    async def write(self, product, channel):
        return f"{channel} copy for {product.title}"


class FakeChannel:
    def __init__(self, name, enabled=True, error: Exception | None = None):
        self.name = name
        self._enabled = enabled
        self.error = error
        self.published: list[tuple[SocialPost, str]] = []

    @property
    def enabled(self):
        return self._enabled

    async def publish(self, post, caption):
        if self.error:
            raise self.error
        self.published.append((post, caption))
        return f"{self.name}-{len(self.published)}"


class CrashingDispatcher:
    """Dispatcher whose publish blows up outright."""

    channels: list = []

    async def force_publish_all(self, post):
        raise RuntimeError("dispatcher offline")

    async def publish_all(self, post, respect_cooldown=True):
        raise RuntimeError("dispatcher offline")

    def get_status(self):
        return {}


def failing_channel(name, reason="Invalid OAuth access token"):
    return FakeChannel(name, error=PublishError(name, reason))


# ── Builders ─────────────────────────────────────────────────────────────────

def make_pipeline(session_factory, alerts, *, discovery=None, sourcing=None, enrichment=None,
                  listing=None, bookkeeping=None, marketing=None) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        session_factory,
        discovery=discovery or FakeDiscovery(),
        sourcing=sourcing or FakeSourcing(session_factory),
        enrichment=enrichment or FakeEnrichment(),
        listing=listing or FakeListing(),
        bookkeeping=bookkeeping or FakeBookkeeping(),
        alerts=alerts,
        marketing=marketing if marketing is not None else RecordingMarketing(),
        max_items=50,
        min_trend_score=20,
        markup=2.2,
    )


async def add_item(session_factory, **fields) -> CatalogItem:
    defaults = {
        "title": "Magnetic Phone Stand",
        "category": "electronics",
        "source": "cj_dropshipping",
        "source_id": "cj-stand",
        "cost": 8.0,
        "selling_price": 17.6,
        "margin_percent": 54.5,
        "status": "discovered",
    }
    defaults.update(fields)
    async with session_factory() as session:
        item = CatalogItem(**defaults)
        session.add(item)
        await session.commit()
        return item
