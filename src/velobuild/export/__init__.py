"""Mapping and manifest export."""

from velobuild.export.exporter import MappingExporter

__all__ = ["MappingExporter"]
