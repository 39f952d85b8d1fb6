# Directory collaborator interface
#
# The resolver and the group expander never talk to the network themselves.
# They call a DirectoryCollaborator, which knows how to translate names and
# SIDs, search a directory, look up a single object, describe a domain and
# enumerate a group's members.
#
# Contract for every method:
# - "not found" is returned as None (or an empty list), never raised
# - a transport or server failure raises CollaboratorUnavailableError
# - calls block; callers needing a deadline wrap them themselves

from typing import Iterable, List, Optional, Sequence

from ..models import AttributeBag, DomainDescriptor, GroupMember

# Attributes the resolver and expander need from directory objects
DEFAULT_MEMBER_ATTRIBUTES = ("objectSid", "sAMAccountName", "name", "objectClass", "distinguishedName")


class DirectoryCollaborator:
    """Base class for directory backends; subclasses override the capabilities they support."""

    def translate_sid_to_name(self, sid: str, server: Optional[str] = None) -> Optional[str]:
        """Translate a SID to ``DOMAIN\\name``."""
        return None

    def translate_name_to_sid(self, domain_or_server: str, name: str) -> Optional[str]:
        """Translate ``domain_or_server\\name`` to a SID string."""
        return None

    def search_directory(self, root_dn: str, search_filter: str, attributes: Sequence[str]) -> List[AttributeBag]:
        """Run a subtree search and return one attribute bag per entry."""
        return []

    def point_lookup(self, directory_path: str, attributes: Sequence[str]) -> Optional[AttributeBag]:
        """Fetch a single object by its WinNT:// or LDAP:// path."""
        return None

    def point_lookup_many(self, directory_paths: Iterable[str], attributes: Sequence[str]) -> List[AttributeBag]:
        """
        Fetch several objects by path in one dispatch.

        The default implementation loops over ``point_lookup``; backends with a
        real batch primitive override it. Paths that are not found are skipped.
        """
        results = []
        for path in directory_paths:
            bag = self.point_lookup(path, attributes)
            if bag is not None:
                results.append(bag)
        return results

    def lookup_domain_info(self, identifier: str) -> Optional[DomainDescriptor]:
        """Describe a domain given its NetBIOS name, DNS name or domain SID."""
        return None

    def enumerate_group_members(self, group_path: str) -> List[GroupMember]:
        """Return the immediate members of a group, each tagged with its directory path."""
        return []

    def lookup_service_sid(self, service_name: str, server: str) -> Optional[str]:
        """Return the per-service SID of ``NT SERVICE\\service_name`` on ``server``."""
        return None

    def close(self) -> None:
        """Release any connections held by the backend."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
