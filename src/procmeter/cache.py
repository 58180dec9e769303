"""Identity cache keyed by canonical process name."""

import threading
from collections import OrderedDict

import structlog

from procmeter.identity import IdentityResolver
from procmeter.models import ProcessIdentity

log = structlog.get_logger()


class IdentityCache:
    """
    Memoizes IdentityResolver.resolve() per canonical name.

    Processes sharing an executable share one entry and pay the descriptor
    lookup once. Without a `maxsize` entries live as long as the cache; with
    one, the least recently used entry is evicted past that size.

    Reads of the unbounded cache take no lock. Inserts are insert-if-absent
    under a lock: two threads missing on the same name may both resolve it, but
    the first insert wins and both callers get that object.
    """

    def __init__(self, resolver: IdentityResolver, maxsize: int | None = None) -> None:
        self._resolver = resolver
        self._maxsize = maxsize if maxsize and maxsize > 0 else None
        self._entries: OrderedDict[str, ProcessIdentity] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def resolver(self) -> IdentityResolver:
        return self._resolver

    @property
    def maxsize(self) -> int | None:
        return self._maxsize

    def get(self, name: str) -> ProcessIdentity:
        """Return the identity for `name`, resolving it on first use."""
        identity = self._lookup(name)
        if identity is not None:
            self.hits += 1
            return identity

        self.misses += 1
        resolved = self._resolver.resolve(name)
        with self._lock:
            identity = self._entries.setdefault(name, resolved)
            if self._maxsize is not None:
                self._entries.move_to_end(name)
                while len(self._entries) > self._maxsize:
                    evicted, _ = self._entries.popitem(last=False)
                    log.debug("identity_evicted", name=evicted)
        return identity

    def _lookup(self, name: str) -> ProcessIdentity | None:
        if self._maxsize is None:
            return self._entries.get(name)
        with self._lock:
            identity = self._entries.get(name)
            if identity is not None:
                self._entries.move_to_end(name)
            return identity

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
