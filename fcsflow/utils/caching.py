"""
On-disk caching for remote annotation queries (BioMart, KEGG REST)

Entries are pickled under ``<namespace>_<params hash>.pkl`` together with
the query parameters and the time they were written, so a stale or
mismatched entry is never served.
"""

import hashlib
import json
import logging
import pickle
import time
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.1"


class ResultCache:
    """Cache keyed by a namespace and a hash of the query parameters"""

    def __init__(self, cache_dir: Union[str, Path], max_age_days: Optional[float] = None):
        """
        Args:
            cache_dir: Directory holding the cache files
            max_age_days: Entries older than this are ignored (never expire if None)
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_age_days = max_age_days

    @staticmethod
    def _params_hash(params: Dict[str, Any]) -> str:
        encoded = json.dumps(params, sort_keys=True, default=str).encode()
        return hashlib.md5(encoded).hexdigest()[:12]

    def get_cache_path(self, namespace: str, params: Dict[str, Any]) -> Path:
        """Cache file for a namespace and parameter set"""
        return self.cache_dir / f"{namespace}_{self._params_hash(params)}.pkl"

    def save(self, namespace: str, value: Any, params: Dict[str, Any]) -> Path:
        """Store a value; returns the cache file"""
        cache_path = self.get_cache_path(namespace, params)
        entry = {
            "value": value,
            "params": params,
            "version": CACHE_VERSION,
            "created": time.time(),
        }

        with open(cache_path, "wb") as f:
            pickle.dump(entry, f)
        logger.debug(f"Cached {namespace}: {cache_path.name}")
        return cache_path

    def load(self, namespace: str, params: Dict[str, Any]) -> Optional[Any]:
        """Cached value, or None when missing, unreadable, stale or mismatched"""
        cache_path = self.get_cache_path(namespace, params)
        if not cache_path.exists():
            return None

        try:
            with open(cache_path, "rb") as f:
                entry = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError) as e:
            logger.warning(f"Ignoring unreadable cache file {cache_path.name}: {e}")
            return None

        if entry.get("version") != CACHE_VERSION:
            logger.debug(f"Cache format changed for {namespace}; ignoring entry")
            return None

        if not params_match(entry.get("params", {}), params):
            logger.debug(f"Cache parameters mismatch for {namespace}")
            return None

        if self.max_age_days is not None:
            age_days = (time.time() - entry.get("created", 0)) / 86400
            if age_days > self.max_age_days:
                logger.info(f"Cached {namespace} is {age_days:.1f} days old; refreshing")
                return None

        logger.debug(f"Loaded cached {namespace}: {cache_path.name}")
        return entry["value"]

    def clear_cache(self, namespace: Optional[str] = None) -> int:
        """Delete cache files (only those of one namespace if given)"""
        pattern = f"{namespace}_*.pkl" if namespace else "*.pkl"

        cleared = 0
        for cache_file in self.cache_dir.glob(pattern):
            try:
                cache_file.unlink()
                cleared += 1
            except OSError as e:
                logger.warning(f"Failed to delete cache file {cache_file}: {e}")

        logger.info(f"Cleared {cleared} cache files from {self.cache_dir}")
        return cleared


def params_match(cached_params: Dict[str, Any], current_params: Dict[str, Any]) -> bool:
    """True when every current parameter equals its cached value"""
    for key, value in current_params.items():
        if cached_params.get(key) != value:
            logger.debug(
                f"Parameter mismatch: {key} cached={cached_params.get(key)} vs current={value}"
            )
            return False
    return True


def get_cache_info(cache_dir: Union[str, Path]) -> Dict[str, Any]:
    """File count, size and per-namespace counts of a cache directory"""
    cache_path = Path(cache_dir)

    if not cache_path.exists():
        return {"exists": False, "files": 0, "total_size": 0}

    cache_files = list(cache_path.glob("*.pkl"))
    total_size = sum(f.stat().st_size for f in cache_files)
    namespaces = Counter(f.stem.rsplit("_", 1)[0] for f in cache_files)

    return {
        "exists": True,
        "files": len(cache_files),
        "total_size": total_size,
        "total_size_mb": total_size / (1024 * 1024),
        "namespaces": dict(namespaces),
        "cache_dir": str(cache_path),
    }
