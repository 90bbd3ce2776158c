from shopflow.models.pipeline_run import PipelineRun  # noqa: F401
from shopflow.models.catalog_item import CatalogItem  # noqa: F401
from shopflow.models.marketing_content import MarketingContent  # noqa: F401
