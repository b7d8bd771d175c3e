"""Tests for the content-addressed tool cache."""

import pytest

from conftest import sha256_of
from velobuild.fetch.cache import ContentCache

DATA = b"tool binary contents"


@pytest.fixture
def cache(tmp_path):
    return ContentCache(tmp_path / "cache")


def stage(cache: ContentCache, data: bytes):
    temp = cache.new_temp_file()
    temp.write_bytes(data)
    return temp


class TestContentCache:
    """Test storing, reading and evicting cache entries."""

    def test_layout(self, cache):
        digest = sha256_of(DATA)
        path = cache.path_for(digest.upper())
        assert path == cache.cache_dir / "sha256" / digest[:2] / digest

    def test_path_for_rejects_non_hash(self, cache):
        with pytest.raises(ValueError):
            cache.path_for("../../etc/passwd")

    def test_put_then_get(self, cache):
        digest = sha256_of(DATA)
        temp = stage(cache, DATA)

        stored = cache.put(temp, digest)

        assert not temp.exists()
        assert stored.read_bytes() == DATA
        assert cache.get(digest) == stored
        assert cache.contains(digest)

    def test_miss(self, cache):
        assert cache.get(sha256_of(b"never stored")) is None

    def test_corrupted_entry_evicted(self, cache):
        digest = sha256_of(DATA)
        stored = cache.put(stage(cache, DATA), digest)
        stored.write_bytes(b"tampered")

        assert cache.get(digest) is None
        assert not stored.exists()

    def test_put_is_idempotent(self, cache):
        digest = sha256_of(DATA)
        first = cache.put(stage(cache, DATA), digest)
        second_temp = stage(cache, DATA)

        second = cache.put(second_temp, digest)

        assert first == second
        assert not second_temp.exists()
        assert cache.stats().total_entries == 1

    def test_put_replaces_corrupted_entry(self, cache):
        digest = sha256_of(DATA)
        stored = cache.put(stage(cache, DATA), digest)
        stored.write_bytes(b"tampered")

        cache.put(stage(cache, DATA), digest)

        assert stored.read_bytes() == DATA

    def test_stats_and_clear(self, cache):
        cache.put(stage(cache, b"one"), sha256_of(b"one"))
        cache.put(stage(cache, b"three"), sha256_of(b"three"))
        cache.new_temp_file()

        stats = cache.stats()
        assert stats.total_entries == 2
        assert stats.total_size_bytes == 8
        assert stats.temp_files == 1

        assert cache.clear() == 2
        assert cache.stats().total_entries == 0
        assert cache.stats().temp_files == 0

    def test_stats_on_missing_dir(self, cache):
        stats = cache.stats()
        assert stats.total_entries == 0
        assert stats.temp_files == 0

    def test_discard(self, cache):
        temp = cache.new_temp_file()
        cache.discard(temp)
        cache.discard(temp)
        cache.discard(None)
        assert not temp.exists()
