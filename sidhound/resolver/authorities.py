# Well-known authority handlers
#
# Accounts under NT SERVICE, APPLICATION PACKAGE AUTHORITY, BUILTIN and
# NT AUTHORITY never live in a domain directory, so they are resolved by a
# handler dedicated to their authority instead of by name translation.

from enum import Enum
from typing import Callable, Dict, Optional

from ..models import AccountEntry, ServerContext
from ..sid.well_known import (
    AUTHORITY_APP_PACKAGE,
    AUTHORITY_BUILTIN,
    AUTHORITY_NT,
    AUTHORITY_NT_SERVICE,
    lookup_well_known_name,
)
from ..utils.cache_manager import CacheView
from .references import IdentityReference
from .steps import call_collaborator, capability_entry, sid_from_bag


class AuthorityKind(str, Enum):
    SERVICE = "service"
    APP_PACKAGE = "app_package"
    BUILTIN = "builtin"
    GENERIC = "generic"


_AUTHORITY_KINDS = {
    AUTHORITY_NT_SERVICE: AuthorityKind.SERVICE,
    AUTHORITY_APP_PACKAGE: AuthorityKind.APP_PACKAGE,
    AUTHORITY_BUILTIN: AuthorityKind.BUILTIN,
    AUTHORITY_NT: AuthorityKind.BUILTIN,
}


def classify_authority(reference: IdentityReference) -> AuthorityKind:
    """
    Pick the handler for a reference's domain segment.

    Domain-less references naming a well-known principal (Everyone, CREATOR
    OWNER) are handled like BUILTIN accounts.
    """
    if reference.domain is None:
        if lookup_well_known_name("", reference.name) is not None:
            return AuthorityKind.BUILTIN
        return AuthorityKind.GENERIC
    return _AUTHORITY_KINDS.get(reference.domain.upper(), AuthorityKind.GENERIC)


def resolve_service_account(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[AccountEntry]:
    """NT SERVICE\\<name>: the static table for virtual accounts, then the per-service SID."""
    static = lookup_well_known_name(AUTHORITY_NT_SERVICE, reference.name)
    if static is not None:
        return static

    sid = call_collaborator(
        "lookup_service_sid", directory.lookup_service_sid, reference.name, context.netbios_name
    )
    if not sid:
        return None
    return AccountEntry(
        sid=sid,
        caption=f"{AUTHORITY_NT_SERVICE}\\{reference.name}",
        domain=AUTHORITY_NT_SERVICE,
        name=reference.name,
    )


def resolve_app_package_account(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[AccountEntry]:
    """APPLICATION PACKAGE AUTHORITY\\<name>: static table, then device capability decoding."""
    static = lookup_well_known_name(AUTHORITY_APP_PACKAGE, reference.name)
    if static is not None:
        return static

    return capability_entry(reference.name)


def resolve_builtin_account(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[AccountEntry]:
    """
    BUILTIN and NT AUTHORITY accounts.

    The static table covers the common principals; anything else (a localized
    group name, say) is looked up directly on the server.
    """
    static = lookup_well_known_name(reference.domain or "", reference.name)
    if static is not None:
        return static

    path = f"WinNT://{context.netbios_name}/{reference.name}"
    bag = call_collaborator("point_lookup", directory.point_lookup, path, ["objectSid", "name"])
    sid = sid_from_bag(bag)
    if not sid:
        return None
    domain = reference.domain or AUTHORITY_BUILTIN
    return AccountEntry(sid=sid, caption=f"{domain}\\{reference.name}", domain=domain, name=reference.name)


AuthorityHandler = Callable[[IdentityReference, ServerContext, CacheView, object], Optional[AccountEntry]]

AUTHORITY_HANDLERS: Dict[AuthorityKind, AuthorityHandler] = {
    AuthorityKind.SERVICE: resolve_service_account,
    AuthorityKind.APP_PACKAGE: resolve_app_package_account,
    AuthorityKind.BUILTIN: resolve_builtin_account,
}
