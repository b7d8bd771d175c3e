"""Tool reference extraction, catalog lookup and dependency mapping."""

from velobuild.resolve.catalog import CatalogEntry, ToolCatalog
from velobuild.resolve.extractor import ExtractionResult, ToolReferenceExtractor, infer_platform
from velobuild.resolve.mapper import DependencyMapper, MappingResult

__all__ = [
    "CatalogEntry",
    "DependencyMapper",
    "ExtractionResult",
    "MappingResult",
    "ToolCatalog",
    "ToolReferenceExtractor",
    "infer_platform",
]
