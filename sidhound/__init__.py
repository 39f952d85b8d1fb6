"""sidhound - Windows security principal resolution across WinNT and LDAP directories."""

from .groups import GroupMembershipExpander, expand_group_members
from .models import DirectoryFlavor, DomainDescriptor, IdentityRecord, ServerContext
from .resolver import IdentityResolver, resolve_identity
from .sid import bytes_to_sid, decode_app_capability_sid, sid_to_bytes
from .utils.cache_manager import ResolutionCache

__version__ = "1.0.0"

__all__ = [
    "GroupMembershipExpander",
    "expand_group_members",
    "DirectoryFlavor",
    "DomainDescriptor",
    "IdentityRecord",
    "ServerContext",
    "IdentityResolver",
    "resolve_identity",
    "bytes_to_sid",
    "decode_app_capability_sid",
    "sid_to_bytes",
    "ResolutionCache",
]
