"""
Config cache module.

Policy knobs (config/policy.yaml) and bootstrap users (config/seed.json)
are read from disk once and served from memory afterwards.
"""

import json
import os
from typing import Dict, Any, List, Optional
from threading import Lock

import yaml

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "config")


class ConfigCache:
    """Thread-safe configuration cache."""

    def __init__(self, config_dir: str = CONFIG_DIR):
        self._config_dir = config_dir
        self._policy: Optional[Dict[str, Any]] = None
        self._seed_data: Optional[Dict[str, Any]] = None
        self._lock = Lock()

    def get_policy(self) -> Dict[str, Any]:
        """Get cached engine policy, loading from disk if not cached."""
        if self._policy is None:
            with self._lock:
                if self._policy is None:  # Double-check locking
                    policy_file = os.path.join(self._config_dir, "policy.yaml")
                    with open(policy_file, 'r') as f:
                        self._policy = yaml.safe_load(f) or {}
        return self._policy

    def get_seed_data(self) -> Dict[str, Any]:
        """Get cached seed data. A missing seed file yields no users."""
        if self._seed_data is None:
            with self._lock:
                if self._seed_data is None:
                    seed_file = os.path.join(self._config_dir, "seed.json")
                    if os.path.exists(seed_file):
                        with open(seed_file, 'r') as f:
                            self._seed_data = json.load(f)
                    else:
                        self._seed_data = {}
        return self._seed_data

    def get_seed_users(self) -> List[Dict[str, Any]]:
        return self.get_seed_data().get("users", [])

    def _section(self, name: str) -> Dict[str, Any]:
        return self.get_policy().get(name, {}) or {}

    @property
    def default_currency(self) -> str:
        return self._section("requests").get("default_currency", "USD")

    @property
    def default_target_coverage(self) -> int:
        return int(self._section("requests").get("default_target_coverage", 100))

    @property
    def coverage_decimal_places(self) -> int:
        return int(self._section("coverage").get("decimal_places", 4))

    @property
    def max_kyc_resubmissions(self) -> int:
        return int(self._section("kyc").get("max_resubmissions", 1))

    @property
    def default_page_size(self) -> int:
        return int(self._section("listing").get("default_page_size", 20))

    @property
    def max_page_size(self) -> int:
        return int(self._section("listing").get("max_page_size", 100))

    @property
    def slow_request_threshold_ms(self) -> float:
        return float(self._section("observability").get("slow_request_threshold_ms", 250))

    @property
    def slow_request_paths(self) -> List[str]:
        return list(self._section("observability").get("slow_request_paths", []))

    def clear_cache(self):
        """Clear all cached data (useful for testing)."""
        with self._lock:
            self._policy = None
            self._seed_data = None


# Global cache instance
config_cache = ConfigCache()
