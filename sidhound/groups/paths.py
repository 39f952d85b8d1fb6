# ADSI-style directory path parsing
#
#   WinNT://SERVER/name                  account on a workgroup computer
#   WinNT://DOMAIN/name                  domain account
#   WinNT://DOMAIN/SERVER/name           local account of a domain member
#   LDAP://CN=name,OU=...,DC=corp,DC=local
#   LDAP://dc01.corp.local/CN=name,...   (server-qualified)
#
# For WinNT paths the segment before the name is the authority that owns the
# account; for LDAP paths it is the domain spelled by the DC= components.

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..exceptions import InvalidDirectoryPathError
from ..models import DirectoryFlavor

WINNT_PREFIX = "winnt://"
LDAP_PREFIX = "ldap://"

# Split a DN on commas that are not backslash-escaped
_RDN_SPLIT = re.compile(r"(?<!\\),")


@dataclass(frozen=True)
class DirectoryPath:
    raw: str
    flavor: DirectoryFlavor
    authority: str  # NetBIOS authority (WinNT) or DNS domain (LDAP)
    name: str
    server: Optional[str] = None
    distinguished_name: Optional[str] = None

    @property
    def domain_dn(self) -> Optional[str]:
        """The DC= suffix of an LDAP path's distinguished name."""
        if not self.distinguished_name:
            return None
        dcs = [rdn for rdn in split_dn(self.distinguished_name) if rdn.upper().startswith("DC=")]
        return ",".join(dcs) or None


def split_dn(dn: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in _RDN_SPLIT.split(dn) if part.strip())


def _rdn_value(rdn: str) -> str:
    _, _, value = rdn.partition("=")
    return value.replace("\\,", ",").strip()


def _parse_winnt(path: str) -> DirectoryPath:
    segments = [s for s in path[len(WINNT_PREFIX):].split("/") if s]
    if len(segments) < 2:
        raise InvalidDirectoryPathError(f"WinNT path needs an authority and a name: {path!r}")
    if len(segments) > 3:
        raise InvalidDirectoryPathError(f"WinNT path has too many segments: {path!r}")
    authority, name = segments[-2], segments[-1]
    # The account's owner is also the server the object lives on
    return DirectoryPath(raw=path, flavor=DirectoryFlavor.WINNT, authority=authority, name=name, server=authority)


def _parse_ldap(path: str) -> DirectoryPath:
    remainder = path[len(LDAP_PREFIX):]
    server = None
    if "/" in remainder:
        server, remainder = remainder.split("/", 1)
    rdns = split_dn(remainder)
    if not rdns or any("=" not in rdn for rdn in rdns):
        raise InvalidDirectoryPathError(f"Not a distinguished name: {path!r}")

    dns_parts = [_rdn_value(rdn) for rdn in rdns if rdn.upper().startswith("DC=")]
    if not dns_parts:
        raise InvalidDirectoryPathError(f"Distinguished name has no DC= components: {path!r}")

    return DirectoryPath(
        raw=path,
        flavor=DirectoryFlavor.LDAP,
        authority=".".join(dns_parts),
        name=_rdn_value(rdns[0]),
        server=server or None,
        distinguished_name=",".join(rdns),
    )


def parse_directory_path(path: str) -> DirectoryPath:
    """
    Parse a WinNT:// or LDAP:// path.

    Raises:
        InvalidDirectoryPathError: unknown provider or malformed path
    """
    if not path:
        raise InvalidDirectoryPathError("Empty directory path")
    path = path.strip()
    lowered = path.lower()
    if lowered.startswith(WINNT_PREFIX):
        return _parse_winnt(path)
    if lowered.startswith(LDAP_PREFIX):
        return _parse_ldap(path)
    raise InvalidDirectoryPathError(f"Unsupported directory path (expected WinNT:// or LDAP://): {path!r}")


def winnt_path(*segments: str) -> str:
    """Join segments into a WinNT:// path."""
    return "WinNT://" + "/".join(segments)
