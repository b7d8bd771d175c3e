"""Artifact definition store."""

from velobuild.store.reader import ArtifactStoreReader, StoreScan, matches_filter

__all__ = ["ArtifactStoreReader", "StoreScan", "matches_filter"]
