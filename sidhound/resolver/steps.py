# Resolution step results and the helpers shared by the strategies
#
# A strategy never mutates the cache: it returns a StepResult carrying the
# record it produced, the cache writes it wants applied, and optionally a
# translated account name the resolver should resolve next.

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from ..exceptions import CollaboratorUnavailableError, MalformedSidError
from ..models import AccountEntry, AttributeBag, DomainDescriptor, IdentityRecord, ServerContext, UnresolvedEntry
from ..sid.codec import CAPABILITY_SID_PREFIX, bytes_to_sid, decode_app_capability_sid, is_sid
from ..sid.well_known import AUTHORITY_APP_PACKAGE, AUTHORITY_BUILTIN, is_well_known_authority
from ..utils.cache_manager import CacheView, CacheWrite, domain_writes
from ..utils.logging import debug, log_collaborator_failure


class ResolutionState(str, Enum):
    """Where a resolution ended up."""

    CACHE_HIT = "cache_hit"
    WELL_KNOWN_AUTHORITY = "well_known_authority"
    SID_TRANSLATE = "sid_translate"
    DIRECTORY_RECURSION = "directory_recursion"
    NAME_TRANSLATE = "name_translate"
    DIRECTORY_SEARCH = "directory_search"
    POINT_LOOKUP = "point_lookup"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class StepResult:
    state: ResolutionState
    record: IdentityRecord
    writes: Tuple[CacheWrite, ...] = ()
    reentry: Optional[str] = None


def call_collaborator(operation: str, func: Callable, *args) -> Any:
    """
    Invoke a collaborator method, treating an unavailable collaborator as "no result".

    Resolution degrades instead of failing: the branch that needed this call
    simply falls through to the next one.
    """
    try:
        return func(*args)
    except CollaboratorUnavailableError as e:
        log_collaborator_failure(operation, e, args)
        return None


def sid_from_bag(bag: Optional[AttributeBag]) -> Optional[str]:
    """Extract objectSid from an attribute bag as a SID string (binary or text values accepted)."""
    if not bag:
        return None
    value = bag.get("objectSid")
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            return bytes_to_sid(value)
        except MalformedSidError as e:
            debug(f"Ignoring malformed objectSid: {e}")
            return None
    value = str(value)
    return value if is_sid(value) else None


def find_domain(
    identifier: Optional[str], view: CacheView, directory
) -> Tuple[Optional[DomainDescriptor], Tuple[CacheWrite, ...]]:
    """
    Look up a domain by NetBIOS name, DNS name or domain SID.

    The cache is consulted first; on a miss the collaborator is asked and the
    descriptor comes back with the writes that would cache it.
    """
    if not identifier or is_well_known_authority(identifier):
        return None, ()

    cached = view.domain_by_netbios(identifier) or view.domain_by_fqdn_or_sid(identifier)
    if cached is not None:
        return cached, ()

    domain = call_collaborator("lookup_domain_info", directory.lookup_domain_info, identifier)
    if domain is None:
        return None, ()
    debug(f"Domain {identifier} -> {domain.netbios_name} ({domain.dns_name})")
    return domain, domain_writes(domain)


def dns_qualifier(
    domain_netbios: str,
    context: ServerContext,
    view: CacheView,
    domain: Optional[DomainDescriptor] = None,
) -> str:
    """
    DNS-form qualifier for an account's domain.

    BUILTIN groups are scoped to the server they live on; the other authorities
    are the same everywhere and keep their own name. Unknown domains fall back
    to their NetBIOS name.
    """
    if domain_netbios.upper() == AUTHORITY_BUILTIN:
        return context.dns_name
    if is_well_known_authority(domain_netbios):
        return domain_netbios
    if domain_netbios.upper() == context.netbios_name.upper():
        return context.dns_name
    if domain is not None and domain.netbios_name.upper() == domain_netbios.upper():
        return domain.dns_name
    cached = view.domain_by_netbios(domain_netbios)
    if cached is not None:
        return cached.dns_name
    return domain_netbios


def record_from_entry(
    reference: str,
    entry: AccountEntry,
    context: ServerContext,
    view: CacheView,
    domain: Optional[DomainDescriptor] = None,
) -> IdentityRecord:
    if entry.domain:
        fqn = f"{dns_qualifier(entry.domain, context, view, domain)}\\{entry.name}"
    else:
        fqn = entry.name
    return IdentityRecord(
        original_reference=reference,
        unresolved_reference=None,
        sid_string=entry.sid,
        short_name=entry.caption,
        fully_qualified_name=fqn,
    )


def unresolved_record(reference: str, short_name: Optional[str] = None, fully_qualified_name: Optional[str] = None):
    """Record for a reference every fallback failed on; the SID field carries the reference itself."""
    return IdentityRecord(
        original_reference=reference,
        unresolved_reference=reference,
        sid_string=reference,
        short_name=short_name or reference,
        fully_qualified_name=fully_qualified_name or short_name or reference,
    )


def record_from_unresolved(reference: str, entry: UnresolvedEntry) -> IdentityRecord:
    return IdentityRecord(
        original_reference=reference,
        unresolved_reference=reference,
        sid_string=entry.sid or reference,
        short_name=entry.short_name,
        fully_qualified_name=entry.fully_qualified_name,
    )


def capability_entry(sid: str) -> Optional[AccountEntry]:
    """Account entry for a device capability SID; None for anything else (app capabilities included)."""
    if not sid.upper().startswith(CAPABILITY_SID_PREFIX):
        return None
    try:
        capability = decode_app_capability_sid(sid)
    except MalformedSidError as e:
        debug(f"Could not decode capability SID {sid}: {e}")
        return None
    if capability.guid is None:
        return None
    return AccountEntry(
        sid=capability.sid,
        caption=capability.account_name,
        domain=AUTHORITY_APP_PACKAGE,
        name=capability.name,
    )
