# Identity reference parsing
#
# Identity references come straight out of permission entries: either a SID
# string ("S-1-5-21-...") or an account reference ("DOMAIN\name" or a bare
# "name"). Some sources also prefix an untranslatable SID with a domain
# ("DOMAIN\S-1-5-21-...").

from dataclasses import dataclass
from typing import Optional

SID_PREFIX = "S-1-"


@dataclass(frozen=True)
class IdentityReference:
    """A raw identity reference split into its domain and name segments."""

    raw: str
    domain: Optional[str]
    name: str

    @property
    def is_sid(self) -> bool:
        return self.name.upper().startswith(SID_PREFIX)

    @property
    def sid(self) -> Optional[str]:
        """The SID segment in canonical (upper-case prefix) form, if this is a SID reference."""
        if not self.is_sid:
            return None
        return "S" + self.name[1:]

    def caption(self, default_domain: Optional[str] = None) -> str:
        """``DOMAIN\\name``, using ``default_domain`` for bare names."""
        domain = self.domain or default_domain
        return f"{domain}\\{self.name}" if domain else self.name


def parse_reference(reference: str) -> IdentityReference:
    """
    Split an identity reference into domain and name.

    Only the first backslash separates the domain; surrounding whitespace is
    ignored. An empty domain segment ("\\name") is treated as no domain.
    """
    raw = reference.strip()
    if "\\" in raw:
        domain, name = raw.split("\\", 1)
        return IdentityReference(raw=raw, domain=domain or None, name=name)
    return IdentityReference(raw=raw, domain=None, name=raw)
