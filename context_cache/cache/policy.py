"""
TTL policy.

Maps a result category to a lifetime: stable facts live about a day,
narrative and emotional context a few tens of minutes, the rest a default.
"""

from context_cache.config.settings import ResultCategory, TTLSettings


class TTLPolicy:
    """Pure mapping from ResultCategory to a TTL in seconds."""

    def __init__(self, settings: TTLSettings):
        self.default = settings.default
        self._table = dict(settings.per_category)

    def ttl_for(self, category: ResultCategory) -> float:
        """Return the TTL in seconds for a category."""
        return self._table.get(ResultCategory(category), self.default)

    def __call__(self, category: ResultCategory) -> float:
        return self.ttl_for(category)
