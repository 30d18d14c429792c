from typing import Set, Tuple

from ..database.manager import CatalogStore


class Deduplicator:
    """Checks the catalog for an existing (platform, external_id) before any write.

    Keys seen earlier in the same pass are also reported as existing, so a
    candidate returned by two selectors is only processed once.
    """

    def __init__(self, store: CatalogStore):
        self.store = store
        self._seen: Set[Tuple[str, str]] = set()

    def exists(self, platform: str, external_id: str) -> bool:
        key = (platform, external_id)
        if key in self._seen:
            return True
        return self.store.exists(platform, external_id)

    def remember(self, platform: str, external_id: str):
        self._seen.add((platform, external_id))
