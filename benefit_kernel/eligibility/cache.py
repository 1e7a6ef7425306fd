"""
Eligibility Cache — explicit, content-addressed memo of ranked results.

Keys are (profile content hash, scheme-set hash, as_of). Each entry records
the catalog version it was computed under; `invalidate_catalog` drops every
entry from an older version. Owned by whoever constructs it, never global.
"""

import hashlib
import json
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from benefit_kernel.models.eligibility import EligibilityResult
from benefit_kernel.models.profile import Profile
from benefit_kernel.models.scheme import Scheme

CacheKey = Tuple[str, str, str]


def _digest(payload) -> str:
    data = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(data).hexdigest()


def profile_hash(profile: Profile) -> str:
    """Hash of the profile content the evaluator reads."""
    dumped = profile.model_dump(mode="json")
    return _digest(dumped["fields"])


def scheme_set_hash(schemes: Iterable[Scheme]) -> str:
    """Order-independent hash of a scheme set's full content."""
    dumped = sorted(
        (s.model_dump(mode="json") for s in schemes), key=lambda d: d["id"]
    )
    return _digest(dumped)


class EligibilityCache:
    """Bounded LRU cache of ranked eligibility results."""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._entries: "OrderedDict[CacheKey, Tuple[int, List[EligibilityResult]]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(profile: Profile, schemes: Iterable[Scheme], as_of: datetime) -> CacheKey:
        return (profile_hash(profile), scheme_set_hash(schemes), as_of.isoformat())

    def get(self, key: CacheKey) -> Optional[List[EligibilityResult]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return [r.model_copy(deep=True) for r in entry[1]]

    def put(
        self, key: CacheKey, results: List[EligibilityResult], catalog_version: int
    ) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = (
                catalog_version,
                [r.model_copy(deep=True) for r in results],
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate_catalog(self, current_version: int) -> int:
        """Drop entries computed under any other catalog version."""
        with self._lock:
            stale = [k for k, (v, _) in self._entries.items() if v != current_version]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def invalidate_profile(self, profile: Profile) -> int:
        digest = profile_hash(profile)
        with self._lock:
            stale = [k for k in self._entries if k[0] == digest]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
