"""
Tests for the on-disk result cache.
"""

import pickle
import time

import pandas as pd

from fcsflow.utils import ResultCache, get_cache_info, params_match


class TestResultCache:
    """Test cache save, load and clearing."""

    def test_round_trip(self, temp_output_dir):
        """Test a cached table is returned for the same parameters."""
        cache = ResultCache(temp_output_dir / "cache")
        table = pd.DataFrame({"ensembl_gene_id": ["ENSG1"], "entrezgene_id": ["7157"]})

        path = cache.save("biomart", table, {"ids": ["ENSG1"], "dataset": "hsapiens"})
        assert path.exists()

        loaded = cache.load("biomart", {"ids": ["ENSG1"], "dataset": "hsapiens"})
        pd.testing.assert_frame_equal(loaded, table)

    def test_miss(self, temp_output_dir):
        """Test unknown parameters give None."""
        cache = ResultCache(temp_output_dir)
        cache.save("kegg_list", ["hsa04110"], {"organism": "hsa"})
        assert cache.load("kegg_list", {"organism": "mmu"}) is None

    def test_corrupt_file(self, temp_output_dir):
        """Test unreadable cache files are treated as misses."""
        cache = ResultCache(temp_output_dir)
        params = {"organism": "hsa"}
        cache.get_cache_path("kegg_list", params).write_bytes(b"not a pickle")
        assert cache.load("kegg_list", params) is None

    def test_stale_entry_is_refreshed(self, temp_output_dir):
        """Test entries older than max_age_days are ignored."""
        cache = ResultCache(temp_output_dir, max_age_days=30)
        params = {"organism": "hsa"}
        path = cache.save("kegg_list", ["hsa04110"], params)
        assert cache.load("kegg_list", params) == ["hsa04110"]

        with open(path, "rb") as f:
            entry = pickle.load(f)
        entry["created"] = time.time() - 31 * 86400
        with open(path, "wb") as f:
            pickle.dump(entry, f)

        assert cache.load("kegg_list", params) is None
        assert ResultCache(temp_output_dir).load("kegg_list", params) == ["hsa04110"]

    def test_clear_namespace(self, temp_output_dir):
        """Test clearing one namespace leaves the others."""
        cache = ResultCache(temp_output_dir)
        cache.save("biomart", 1, {"a": 1})
        cache.save("biomart", 2, {"a": 2})
        cache.save("kgml", 3, {"a": 1})

        assert cache.clear_cache("biomart") == 2
        assert cache.load("kgml", {"a": 1}) == 3
        assert cache.clear_cache() == 1


class TestCacheHelpers:
    """Test parameter matching and cache info."""

    def test_params_match(self):
        """Test only the current keys are compared."""
        assert params_match({"a": 1, "b": 2}, {"a": 1})
        assert not params_match({"a": 1}, {"a": 2})

    def test_cache_info(self, temp_output_dir):
        """Test file counts and sizes."""
        assert get_cache_info(temp_output_dir / "missing") == {
            "exists": False,
            "files": 0,
            "total_size": 0,
        }

        cache = ResultCache(temp_output_dir / "cache")
        cache.save("biomart", list(range(100)), {"a": 1})
        info = get_cache_info(temp_output_dir / "cache")

        assert info["exists"] is True
        assert info["files"] == 1
        assert info["total_size"] > 0

    def test_cache_info_namespaces(self, temp_output_dir):
        """Test files are counted per namespace."""
        cache = ResultCache(temp_output_dir)
        cache.save("kegg_list", 1, {"organism": "hsa"})
        cache.save("kegg_list", 2, {"organism": "mmu"})
        cache.save("biomart", 3, {"a": 1})

        info = get_cache_info(temp_output_dir)
        assert info["namespaces"] == {"kegg_list": 2, "biomart": 1}
