"""
Session-level resolution cache for sidhound.

Four independently locked namespaces are shared by every resolution in a
session:

1. accounts by SID      ("<server>\\<sid>"     -> AccountEntry or UnresolvedEntry)
2. accounts by caption  ("<server>\\<caption>" -> AccountEntry or UnresolvedEntry)
3. domains by NetBIOS   ("<netbios>"           -> DomainDescriptor)
4. domains by FQDN/SID  ("<dns>" or "<sid>"    -> DomainDescriptor)

A reference that failed every lookup is stored as an UnresolvedEntry, so
repeating it on the same server makes no collaborator calls. A later
positive result for the same key replaces it.

Thread-safety:
- Each namespace owns its own RLock, held only for the dict operation, so
  resolutions touching different namespaces never contend
- Concurrent writers of the same key are allowed; the last writer wins
- There is no eviction and no TTL: entries live for the whole session

The cache is passed explicitly to the resolver and the expander; there is no
process-wide instance.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..models import AccountEntry, DomainDescriptor, UnresolvedEntry
from ..utils.logging import info, log_cache

ACCOUNTS_BY_SID = "accounts_by_sid"
ACCOUNTS_BY_CAPTION = "accounts_by_caption"
DOMAINS_BY_NETBIOS = "domains_by_netbios"
DOMAINS_BY_FQDN = "domains_by_fqdn"

NAMESPACES = (ACCOUNTS_BY_SID, ACCOUNTS_BY_CAPTION, DOMAINS_BY_NETBIOS, DOMAINS_BY_FQDN)

CachedAccount = Union[AccountEntry, UnresolvedEntry]


def account_key(server: str, identifier: str) -> str:
    """Build a server-scoped account key (``SERVER\\S-1-5-...`` or ``SERVER\\DOMAIN\\name``)."""
    return f"{server}\\{identifier}"


@dataclass(frozen=True)
class CacheWrite:
    """A pending write produced by a resolution step and applied by the resolver."""

    namespace: str
    key: str
    value: Any


def account_writes(server: str, entry: AccountEntry) -> Tuple[CacheWrite, ...]:
    """Writes that store an account under both account namespaces."""
    return (
        CacheWrite(ACCOUNTS_BY_SID, account_key(server, entry.sid), entry),
        CacheWrite(ACCOUNTS_BY_CAPTION, account_key(server, entry.caption), entry),
    )


def unresolved_write(namespace: str, server: str, identifier: str, entry: UnresolvedEntry) -> CacheWrite:
    """Write that remembers a failed reference under one account namespace."""
    return CacheWrite(namespace, account_key(server, identifier), entry)


def domain_writes(domain: DomainDescriptor) -> Tuple[CacheWrite, ...]:
    """Writes that store a domain descriptor under each of its keys."""
    writes = []
    if domain.netbios_name:
        writes.append(CacheWrite(DOMAINS_BY_NETBIOS, domain.netbios_name, domain))
    if domain.dns_name:
        writes.append(CacheWrite(DOMAINS_BY_FQDN, domain.dns_name, domain))
    if domain.sid_prefix:
        writes.append(CacheWrite(DOMAINS_BY_FQDN, domain.sid_prefix, domain))
    return tuple(writes)


class CacheNamespace:
    """
    One independently locked key/value mapping.

    Keys are case-insensitive (Windows account and domain names are).
    """

    def __init__(self, name: str):
        self.name = name
        self._data: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self.stats = {"hits": 0, "misses": 0, "writes": 0}

    @staticmethod
    def _normalize(key: str) -> str:
        return key.upper()

    def try_get(self, key: str) -> Tuple[Optional[Any], bool]:
        """Return ``(value, True)`` on a hit and ``(None, False)`` on a miss."""
        normalized = self._normalize(key)
        with self._lock:
            if normalized in self._data:
                self.stats["hits"] += 1
                return self._data[normalized], True
            self.stats["misses"] += 1
            return None, False

    def set(self, key: str, value: Any) -> None:
        normalized = self._normalize(key)
        with self._lock:
            self._data[normalized] = value
            self.stats["writes"] += 1

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._normalize(key) in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the current contents."""
        with self._lock:
            return dict(self._data)


class CacheView:
    """Read-only access to a ResolutionCache, handed to resolution strategies."""

    def __init__(self, cache: "ResolutionCache"):
        self._cache = cache

    def try_get(self, namespace: str, key: str) -> Tuple[Optional[Any], bool]:
        return self._cache.try_get(namespace, key)

    def account_by_sid(self, server: str, sid: str) -> Optional[CachedAccount]:
        value, _ = self._cache.try_get(ACCOUNTS_BY_SID, account_key(server, sid))
        return value

    def account_by_caption(self, server: str, caption: str) -> Optional[CachedAccount]:
        value, _ = self._cache.try_get(ACCOUNTS_BY_CAPTION, account_key(server, caption))
        return value

    def domain_by_netbios(self, netbios_name: str) -> Optional[DomainDescriptor]:
        value, _ = self._cache.try_get(DOMAINS_BY_NETBIOS, netbios_name)
        return value

    def domain_by_fqdn_or_sid(self, identifier: str) -> Optional[DomainDescriptor]:
        value, _ = self._cache.try_get(DOMAINS_BY_FQDN, identifier)
        return value


class ResolutionCache:
    """
    Session cache shared across resolution calls.

    Only ``try_get`` and ``set`` semantics are exposed: nothing is deleted and
    nothing expires.
    """

    def __init__(self):
        self._namespaces: Dict[str, CacheNamespace] = {name: CacheNamespace(name) for name in NAMESPACES}

    def namespace(self, name: str) -> CacheNamespace:
        try:
            return self._namespaces[name]
        except KeyError:
            raise KeyError(f"Unknown cache namespace: {name}") from None

    def try_get(self, namespace: str, key: str) -> Tuple[Optional[Any], bool]:
        value, found = self.namespace(namespace).try_get(key)
        if found:
            log_cache(namespace, key)
        return value, found

    def set(self, namespace: str, key: str, value: Any) -> None:
        self.namespace(namespace).set(key, value)
        log_cache(namespace, key, stored=True)

    def apply(self, writes: Iterable[CacheWrite]) -> int:
        """Apply pending writes in order; returns the number applied."""
        count = 0
        for write in writes:
            self.set(write.namespace, write.key, write.value)
            count += 1
        return count

    def view(self) -> CacheView:
        return CacheView(self)

    # ==========================================
    # Convenience writers
    # ==========================================

    def add_account(self, server: str, entry: AccountEntry) -> None:
        self.apply(account_writes(server, entry))

    def add_domain(self, domain: DomainDescriptor) -> None:
        self.apply(domain_writes(domain))

    def domains(self) -> List[DomainDescriptor]:
        """All distinct domain descriptors seen this session."""
        seen = {}
        for descriptor in self.namespace(DOMAINS_BY_NETBIOS).snapshot().values():
            seen[descriptor.netbios_name.upper()] = descriptor
        return list(seen.values())

    @property
    def stats(self) -> Dict[str, Dict[str, int]]:
        return {name: dict(ns.stats) for name, ns in self._namespaces.items()}

    def print_stats(self):
        """Print cache performance statistics."""
        stats = self.stats
        total_requests = sum(s["hits"] + s["misses"] for s in stats.values())

        if total_requests == 0:
            info("Cache: No requests made")
            return

        total_hits = sum(s["hits"] for s in stats.values())
        info("Cache Statistics:")
        info(f"  Hits: {total_hits} ({(total_hits / total_requests) * 100:.1f}%)")
        for name, ns in self._namespaces.items():
            s = stats[name]
            info(f"  {name}: {len(ns)} entries, {s['hits']} hits, {s['misses']} misses")
