"""
Process-local persisted state.

Small string values that must survive a process restart (the active
organization choice, the current session token) live in a dedicated Django
cache alias. Deployments point the alias at a file-based cache under
LOCAL_STATE_DIR; tests use locmem.
"""
import logging
from django.core.cache import caches

logger = logging.getLogger(__name__)

CURRENT_ORGANIZATION_KEY = 'currentOrganizationId'
SESSION_TOKEN_KEY = 'sessionToken'

LOCAL_STATE_ALIAS = 'local_state'


class LocalStateStore:
    """
    Key/value access to the persisted local state.

    Values never expire; they are removed explicitly on sign-out.
    """

    def __init__(self, alias: str = LOCAL_STATE_ALIAS):
        self.alias = alias

    @property
    def _cache(self):
        return caches[self.alias]

    def get(self, key: str):
        return self._cache.get(key)

    def set(self, key: str, value: str):
        self._cache.set(key, value, timeout=None)

    def delete(self, key: str):
        self._cache.delete(key)

    def clear(self, *keys):
        """Remove the given keys, or every known key when called bare."""
        for key in keys or (CURRENT_ORGANIZATION_KEY, SESSION_TOKEN_KEY):
            self._cache.delete(key)
        logger.debug("Cleared local state", extra={'keys': list(keys)})
