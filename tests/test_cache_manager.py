"""
Tests for the session resolution cache.
"""
import threading

import pytest

from sidhound.models import AccountEntry, DomainDescriptor
from sidhound.utils.cache_manager import (
    ACCOUNTS_BY_CAPTION,
    ACCOUNTS_BY_SID,
    DOMAINS_BY_FQDN,
    DOMAINS_BY_NETBIOS,
    NAMESPACES,
    CacheNamespace,
    CacheWrite,
    ResolutionCache,
    account_key,
    account_writes,
    domain_writes,
)

ALICE = AccountEntry(sid="S-1-5-21-1-2-3-1104", caption="CORP\\alice", domain="CORP", name="alice")


class TestCacheNamespace:
    """Tests for a single locked namespace"""

    def test_miss_then_hit(self):
        """Should report misses and hits separately"""
        ns = CacheNamespace("test")

        assert ns.try_get("key") == (None, False)
        ns.set("key", "value")
        assert ns.try_get("key") == ("value", True)
        assert ns.stats == {"hits": 1, "misses": 1, "writes": 1}

    def test_keys_case_insensitive(self):
        """Should treat keys case-insensitively"""
        ns = CacheNamespace("test")
        ns.set("SRV01\\CORP\\Alice", 1)

        assert ns.try_get("srv01\\corp\\alice") == (1, True)
        assert "SRV01\\CORP\\ALICE" in ns

    def test_cached_none_is_a_hit(self):
        """Should distinguish a stored None from a missing key"""
        ns = CacheNamespace("test")
        ns.set("key", None)

        assert ns.try_get("key") == (None, True)

    def test_last_write_wins(self):
        """Should keep the most recent value for a key"""
        ns = CacheNamespace("test")
        ns.set("key", "first")
        ns.set("KEY", "second")

        assert ns.try_get("key") == ("second", True)
        assert len(ns) == 1

    def test_snapshot_is_a_copy(self):
        """Should not expose the internal dict"""
        ns = CacheNamespace("test")
        ns.set("a", 1)
        snap = ns.snapshot()
        snap["b"] = 2

        assert "b" not in ns


class TestResolutionCacheNamespaces:
    """Tests for namespace routing"""

    def test_has_four_namespaces(self):
        """Should create every namespace up front"""
        cache = ResolutionCache()
        for name in NAMESPACES:
            assert cache.namespace(name).name == name

    def test_unknown_namespace(self):
        """Should reject unknown namespace names"""
        with pytest.raises(KeyError):
            ResolutionCache().try_get("nope", "key")

    def test_namespaces_isolated(self):
        """Should keep the same key separate across namespaces"""
        cache = ResolutionCache()
        cache.set(ACCOUNTS_BY_SID, "k", "sid-value")

        assert cache.try_get(ACCOUNTS_BY_CAPTION, "k") == (None, False)
        assert cache.try_get(ACCOUNTS_BY_SID, "k") == ("sid-value", True)


class TestCacheWrites:
    """Tests for pending writes"""

    def test_account_key(self):
        """Should scope account keys by server"""
        assert account_key("SRV01", "CORP\\alice") == "SRV01\\CORP\\alice"

    def test_account_writes_cover_sid_and_caption(self):
        """Should produce one write per account namespace"""
        writes = account_writes("SRV01", ALICE)

        assert writes == (
            CacheWrite(ACCOUNTS_BY_SID, "SRV01\\S-1-5-21-1-2-3-1104", ALICE),
            CacheWrite(ACCOUNTS_BY_CAPTION, "SRV01\\CORP\\alice", ALICE),
        )

    def test_domain_writes_use_every_key(self):
        """Should index a domain by NetBIOS, DNS name and SID"""
        domain = DomainDescriptor("CORP", "corp.local", "S-1-5-21-1-2-3", "DC=corp,DC=local")
        writes = domain_writes(domain)

        assert [(w.namespace, w.key) for w in writes] == [
            (DOMAINS_BY_NETBIOS, "CORP"),
            (DOMAINS_BY_FQDN, "corp.local"),
            (DOMAINS_BY_FQDN, "S-1-5-21-1-2-3"),
        ]

    def test_domain_writes_skip_missing_sid(self):
        """Should not index a domain under an absent SID"""
        writes = domain_writes(DomainDescriptor("WKS07", "wks07"))
        assert len(writes) == 2

    def test_apply_returns_count(self):
        """Should apply writes in order and count them"""
        cache = ResolutionCache()
        applied = cache.apply(
            [CacheWrite(ACCOUNTS_BY_SID, "k", "first"), CacheWrite(ACCOUNTS_BY_SID, "k", "second")]
        )

        assert applied == 2
        assert cache.try_get(ACCOUNTS_BY_SID, "k") == ("second", True)


class TestCacheView:
    """Tests for the read-only view handed to strategies"""

    def test_account_lookups(self):
        """Should find an added account by SID and by caption"""
        cache = ResolutionCache()
        cache.add_account("SRV01", ALICE)
        view = cache.view()

        assert view.account_by_sid("SRV01", "S-1-5-21-1-2-3-1104") is ALICE
        assert view.account_by_caption("srv01", "corp\\ALICE") is ALICE
        assert view.account_by_sid("SRV02", "S-1-5-21-1-2-3-1104") is None

    def test_domain_lookups(self):
        """Should find an added domain by any of its keys"""
        cache = ResolutionCache()
        domain = DomainDescriptor("CORP", "corp.local", "S-1-5-21-1-2-3")
        cache.add_domain(domain)
        view = cache.view()

        assert view.domain_by_netbios("corp") is domain
        assert view.domain_by_fqdn_or_sid("CORP.LOCAL") is domain
        assert view.domain_by_fqdn_or_sid("S-1-5-21-1-2-3") is domain

    def test_view_has_no_writers(self):
        """Should not expose mutation"""
        view = ResolutionCache().view()
        assert not hasattr(view, "set")
        assert not hasattr(view, "apply")

    def test_domains_deduplicated(self):
        """Should list each domain once"""
        cache = ResolutionCache()
        cache.add_domain(DomainDescriptor("CORP", "corp.local"))
        cache.add_domain(DomainDescriptor("corp", "corp.local"))
        cache.add_domain(DomainDescriptor("LAB", "lab.local"))

        assert sorted(d.netbios_name.upper() for d in cache.domains()) == ["CORP", "LAB"]


class TestCacheStats:
    """Tests for statistics"""

    def test_stats_per_namespace(self):
        """Should count hits and misses per namespace"""
        cache = ResolutionCache()
        cache.add_account("SRV01", ALICE)
        cache.try_get(ACCOUNTS_BY_SID, account_key("SRV01", ALICE.sid))
        cache.try_get(DOMAINS_BY_NETBIOS, "CORP")

        stats = cache.stats
        assert stats[ACCOUNTS_BY_SID]["hits"] == 1
        assert stats[DOMAINS_BY_NETBIOS]["misses"] == 1
        assert stats[ACCOUNTS_BY_CAPTION]["writes"] == 1

    def test_print_stats_without_requests(self, mocker):
        """Should report that no requests were made"""
        mock_info = mocker.patch("sidhound.utils.cache_manager.info")
        ResolutionCache().print_stats()

        mock_info.assert_called_once_with("Cache: No requests made")

    def test_print_stats_with_requests(self, mocker):
        """Should print the hit rate"""
        mock_info = mocker.patch("sidhound.utils.cache_manager.info")
        cache = ResolutionCache()
        cache.set(ACCOUNTS_BY_SID, "k", 1)
        cache.try_get(ACCOUNTS_BY_SID, "k")
        cache.try_get(ACCOUNTS_BY_SID, "missing")
        cache.print_stats()

        printed = [call.args[0] for call in mock_info.call_args_list]
        assert "  Hits: 1 (50.0%)" in printed


class TestCacheThreadSafety:
    """Tests for thread safety"""

    def test_concurrent_writers(self):
        """Should keep every entry written from several threads"""
        cache = ResolutionCache()

        def writer(n):
            for i in range(50):
                cache.set(ACCOUNTS_BY_SID, f"T{n}\\S-1-5-21-{i}", i)
                cache.try_get(ACCOUNTS_BY_CAPTION, f"T{n}\\x{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache.namespace(ACCOUNTS_BY_SID)) == 250
        assert cache.stats[ACCOUNTS_BY_SID]["writes"] == 250
        assert cache.stats[ACCOUNTS_BY_CAPTION]["misses"] == 250

    def test_concurrent_same_key(self):
        """Should end with one of the written values when writers race on a key"""
        cache = ResolutionCache()

        def writer(n):
            for _ in range(100):
                cache.set(DOMAINS_BY_NETBIOS, "CORP", n)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        value, found = cache.try_get(DOMAINS_BY_NETBIOS, "CORP")
        assert found
        assert value in range(4)
