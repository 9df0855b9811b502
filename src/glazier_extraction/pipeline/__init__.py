"""Page-by-page extraction pipeline: rasterize, extract, aggregate, account."""

from .accounting import RunAccountant, compute_cost
from .aggregate import Aggregation, aggregate, merge, sort_items
from .extract import OpenRouterClient, OpenRouterConfig, PageExtractor, parse_items_response
from .rasterize import PdfRasterizer, RasterizationError
from .flow import ExtractionFlow, FlowConfig, ProjectInfo, build_flow_config, build_result, reaggregate_reports

__all__ = [
    "RunAccountant",
    "compute_cost",
    "Aggregation",
    "aggregate",
    "merge",
    "sort_items",
    "OpenRouterClient",
    "OpenRouterConfig",
    "PageExtractor",
    "parse_items_response",
    "PdfRasterizer",
    "RasterizationError",
    "ExtractionFlow",
    "FlowConfig",
    "ProjectInfo",
    "build_flow_config",
    "build_result",
    "reaggregate_reports",
]
