from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from scatter.core.ApiTypes import Identity
from shared.log import get_logger

from .storage import StorageProvider

logger = get_logger(__name__)

IDENTITY_KEY = "identity"


@dataclass
class SessionCache:
    """
    Last known identity, readable without a round trip.

    Whole-object replace only; cleared on forget. When a storage provider is
    attached the identity also survives process restarts.
    """
    storage: Optional[StorageProvider] = None
    _identity: Optional[Identity] = field(default=None, init=False, repr=False)

    def get(self) -> Optional[Identity]:
        return self._identity

    def set(self, identity: Identity) -> None:
        if not isinstance(identity, Identity):
            raise TypeError(f"Expected Identity, got {type(identity).__name__}")
        self._identity = identity
        if self.storage is not None:
            self.storage.save(IDENTITY_KEY, identity.to_dict())

    def clear(self) -> None:
        self._identity = None
        if self.storage is not None:
            self.storage.remove(IDENTITY_KEY)

    def load(self) -> Optional[Identity]:
        """Restore the identity persisted by a previous session, if any."""
        if self.storage is None:
            return self._identity
        raw = self.storage.load(IDENTITY_KEY)
        if raw is None:
            return self._identity
        try:
            self._identity = Identity.from_dict(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached identity: {e}")
            self.storage.remove(IDENTITY_KEY)
        return self._identity
