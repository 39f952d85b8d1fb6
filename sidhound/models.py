# Identity data models
#
# Records produced and exchanged by the resolver, the group expander and the
# directory collaborators. All records are immutable once built.

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

# Raw attribute bag returned by directory collaborators (attribute name -> value)
AttributeBag = Dict[str, Any]


class DirectoryFlavor(str, Enum):
    """Kind of directory a server exposes."""

    WINNT = "WinNT"  # flat namespace (local SAM / NT4-style domain)
    LDAP = "LDAP"  # hierarchical directory (Active Directory)


@dataclass(frozen=True)
class ServerContext:
    """
    The server an identity reference was read from.

    Cache keys are scoped by ``netbios_name`` so that identical account
    names on different servers never collide.
    """

    netbios_name: str
    dns_name: str
    flavor: DirectoryFlavor = DirectoryFlavor.LDAP

    def __str__(self) -> str:
        return f"{self.netbios_name} ({self.dns_name}, {self.flavor.value})"


@dataclass(frozen=True)
class DomainDescriptor:
    """Domain (or workgroup computer) naming data, cached under all of its keys."""

    netbios_name: str
    dns_name: str
    sid_prefix: Optional[str] = None
    distinguished_name: Optional[str] = None  # None for flat namespaces

    @property
    def is_directory_searchable(self) -> bool:
        return bool(self.distinguished_name)


@dataclass(frozen=True)
class AccountEntry:
    """Win32-style account entry stored in the resolution cache."""

    sid: str
    caption: str  # NETBIOS\name
    domain: str  # NetBIOS domain (or authority) name
    name: str


@dataclass(frozen=True)
class UnresolvedEntry:
    """Cached outcome for a reference every lookup failed on, scoped to one server."""

    sid: Optional[str]  # set for SID references only
    short_name: str
    fully_qualified_name: str


@dataclass(frozen=True)
class IdentityRecord:
    """Canonical identity produced by the resolver."""

    original_reference: str
    unresolved_reference: Optional[str]
    sid_string: str
    short_name: str  # domainNetBIOS\name
    fully_qualified_name: str  # domainDNS\name

    @property
    def resolved(self) -> bool:
        return self.unresolved_reference is None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["resolved"] = self.resolved
        return data


@dataclass(frozen=True)
class CapabilityRecord:
    """Descriptive record for an app or device capability SID."""

    sid: str
    name: Optional[str] = None
    guid: Optional[str] = None  # device interface class, device capabilities only
    description: Optional[str] = None
    schema_class: Optional[str] = None
    account_name: Optional[str] = None


@dataclass(frozen=True)
class GroupMember:
    """One raw group member as returned by member enumeration."""

    path: str
    attributes: AttributeBag = field(default_factory=dict)


def dn_from_dns(dns_name: str) -> str:
    """Build a domain distinguished name from its DNS name (corp.local -> DC=corp,DC=local)."""
    return ",".join(f"DC={part}" for part in dns_name.split(".") if part)
