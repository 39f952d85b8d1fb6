"""
Pytest configuration and shared fixtures for sidhound tests.
"""

from collections import Counter

import pytest

from sidhound.collaborators.base import DirectoryCollaborator
from sidhound.exceptions import CollaboratorUnavailableError
from sidhound.models import DirectoryFlavor, DomainDescriptor, ServerContext
from sidhound.sid.codec import sid_to_bytes
from sidhound.utils.cache_manager import ResolutionCache

CORP_SID = "S-1-5-21-1111111111-2222222222-3333333333"
SRV_SID = "S-1-5-21-4444444444-5555555555-6666666666"

CORP = DomainDescriptor(
    netbios_name="CORP",
    dns_name="corp.local",
    sid_prefix=CORP_SID,
    distinguished_name="DC=corp,DC=local",
)


class FakeDirectory(DirectoryCollaborator):
    """
    In-memory directory collaborator that records every call.

    Args:
        sid_names: SID -> "DOMAIN\\name" for translate_sid_to_name
        name_sids: "DOMAIN\\NAME" (any case) -> SID for translate_name_to_sid
        domains: descriptors answered by lookup_domain_info (by NetBIOS, DNS or SID)
        search_results: root DN -> attribute bags returned by search_directory
        point_bags: path (any case) -> attribute bag for point lookups
        members: group path (any case) -> GroupMember list
        service_sids: service name (any case) -> SID
        failing: operation names that raise CollaboratorUnavailableError
    """

    def __init__(
        self,
        sid_names=None,
        name_sids=None,
        domains=None,
        search_results=None,
        point_bags=None,
        members=None,
        service_sids=None,
        failing=(),
    ):
        self.sid_names = dict(sid_names or {})
        self.name_sids = {k.upper(): v for k, v in (name_sids or {}).items()}
        self.domains = list(domains or [])
        self.search_results = dict(search_results or {})
        self.point_bags = {k.upper(): v for k, v in (point_bags or {}).items()}
        self.members = {k.upper(): v for k, v in (members or {}).items()}
        self.service_sids = {k.upper(): v for k, v in (service_sids or {}).items()}
        self.failing = set(failing)
        self.calls = []

    def _record(self, operation, *args):
        self.calls.append((operation, args))
        if operation in self.failing:
            raise CollaboratorUnavailableError(operation, "simulated outage")

    def count(self, operation=None):
        if operation is None:
            return len(self.calls)
        return Counter(op for op, _ in self.calls)[operation]

    def operations(self):
        return [op for op, _ in self.calls]

    def translate_sid_to_name(self, sid, server=None):
        self._record("translate_sid_to_name", sid, server)
        return self.sid_names.get(sid)

    def translate_name_to_sid(self, domain_or_server, name):
        self._record("translate_name_to_sid", domain_or_server, name)
        return self.name_sids.get(f"{domain_or_server}\\{name}".upper())

    def search_directory(self, root_dn, search_filter, attributes):
        self._record("search_directory", root_dn, search_filter, tuple(attributes))
        return list(self.search_results.get(root_dn, []))

    def point_lookup(self, directory_path, attributes):
        self._record("point_lookup", directory_path, tuple(attributes))
        return self.point_bags.get(directory_path.upper())

    def point_lookup_many(self, directory_paths, attributes):
        paths = list(directory_paths)
        self._record("point_lookup_many", tuple(paths), tuple(attributes))
        return [self.point_bags[p.upper()] for p in paths if p.upper() in self.point_bags]

    def lookup_domain_info(self, identifier):
        self._record("lookup_domain_info", identifier)
        wanted = identifier.upper()
        for domain in self.domains:
            keys = {domain.netbios_name.upper(), domain.dns_name.upper(), (domain.sid_prefix or "").upper()}
            if wanted in keys:
                return domain
        return None

    def enumerate_group_members(self, group_path):
        self._record("enumerate_group_members", group_path)
        return list(self.members.get(group_path.upper(), []))

    def lookup_service_sid(self, service_name, server):
        self._record("lookup_service_sid", service_name, server)
        return self.service_sids.get(service_name.upper())


def account_bag(name, sid, **extra):
    """Attribute bag as a directory search would return it."""
    bag = {"sAMAccountName": name, "name": name, "objectSid": sid_to_bytes(sid), "objectClass": ["top", "user"]}
    bag.update(extra)
    return bag


@pytest.fixture
def make_directory():
    """Factory for FakeDirectory instances."""
    return FakeDirectory


@pytest.fixture
def context():
    """A domain-joined member server."""
    return ServerContext(netbios_name="SRV01", dns_name="srv01.corp.local", flavor=DirectoryFlavor.LDAP)


@pytest.fixture
def workgroup_context():
    """A standalone workgroup computer."""
    return ServerContext(netbios_name="WKS07", dns_name="wks07", flavor=DirectoryFlavor.WINNT)


@pytest.fixture
def cache():
    return ResolutionCache()


@pytest.fixture
def corp():
    """Descriptor of the CORP Active Directory domain."""
    return CORP


@pytest.fixture
def make_bag():
    """Factory for directory attribute bags (objectSid stored as bytes)."""
    return account_bag


@pytest.fixture(autouse=True)
def reset_verbosity(monkeypatch):
    """Keep verbosity flags from leaking between tests."""
    monkeypatch.delenv("SIDHOUND_DEBUG", raising=False)
    yield
    from sidhound.utils.logging import set_verbosity

    set_verbosity(False, False)
