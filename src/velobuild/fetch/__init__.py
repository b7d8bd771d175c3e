"""Tool download, verification and caching."""

from velobuild.fetch.cache import CacheStats, ContentCache
from velobuild.fetch.fetcher import FetchReport, ToolFetcher
from velobuild.fetch.http import DownloadedFile, Downloader

__all__ = [
    "CacheStats",
    "ContentCache",
    "DownloadedFile",
    "Downloader",
    "FetchReport",
    "ToolFetcher",
]
