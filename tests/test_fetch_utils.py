"""
Tests for helpers shared by the fetchers.
"""

from datetime import datetime, timezone

from solbooks.core.fetch_utils import batched, block_timestamp, cache_key

from tests.conftest import BLOCK_TIME


class TestFetchUtils:

    def test_cache_key_is_scoped_by_mint(self):
        assert cache_key("sig", "native") == "sig:native"
        assert cache_key("sig", "native") != cache_key("sig", "mint")

    def test_batched(self):
        assert batched([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert batched([1, 2], 0) == [[1], [2]]
        assert batched([], 3) == []

    def test_block_timestamp(self):
        assert block_timestamp(BLOCK_TIME) == datetime.fromtimestamp(BLOCK_TIME, tz=timezone.utc)
        assert block_timestamp(None).tzinfo is not None
