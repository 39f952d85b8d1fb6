# Resolution strategies
#
# Each strategy is a plain function taking the parsed reference, the server
# context, a read-only cache view and the directory collaborator. It returns
# None when it does not apply, or a StepResult that ends the resolution (or
# asks for one bounded re-entry with a translated name).
#
# The resolver tries them in this order:
#   1. cached account (by SID or caption)
#   2. well-known authority handler (NT SERVICE, APPLICATION PACKAGE AUTHORITY,
#      BUILTIN, NT AUTHORITY)
#   3. SID reference: static table, SID translation, capability decoding
#   4. account reference: name translation on the server, then in the domain,
#      then a directory search, then a direct point lookup

from typing import Optional

from ldap3.utils.conv import escape_filter_chars

from ..collaborators.base import DEFAULT_MEMBER_ATTRIBUTES
from ..models import AccountEntry, ServerContext, UnresolvedEntry
from ..sid.codec import get_domain_sid
from ..sid.well_known import lookup_well_known_sid, split_caption
from ..utils.cache_manager import (
    ACCOUNTS_BY_CAPTION,
    ACCOUNTS_BY_SID,
    CacheView,
    CacheWrite,
    account_key,
    account_writes,
    unresolved_write,
)
from ..utils.logging import debug
from .authorities import AUTHORITY_HANDLERS, AuthorityKind, classify_authority
from .references import IdentityReference
from .steps import (
    ResolutionState,
    StepResult,
    call_collaborator,
    capability_entry,
    dns_qualifier,
    find_domain,
    record_from_entry,
    record_from_unresolved,
    sid_from_bag,
)


def lookup_cache(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[StepResult]:
    server = context.netbios_name
    if reference.is_sid:
        entry = view.account_by_sid(server, reference.sid)
    else:
        entry = view.account_by_caption(server, reference.caption(default_domain=server))
        if entry is None:
            # Domain-less principals (Everyone) are cached under their bare name
            entry = view.account_by_caption(server, reference.name)
    if entry is None:
        return None
    if isinstance(entry, UnresolvedEntry):
        return StepResult(ResolutionState.UNRESOLVED, record_from_unresolved(reference.raw, entry))
    return StepResult(
        ResolutionState.CACHE_HIT,
        record_from_entry(reference.raw, entry, context, view),
    )


def dispatch_well_known_authority(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[StepResult]:
    kind = classify_authority(reference)
    if kind is AuthorityKind.GENERIC:
        return None

    entry = AUTHORITY_HANDLERS[kind](reference, context, view, directory)
    if entry is None:
        debug(f"{kind.value} handler found nothing for {reference.raw}")
        return None
    return StepResult(
        ResolutionState.WELL_KNOWN_AUTHORITY,
        record_from_entry(reference.raw, entry, context, view),
        writes=account_writes(context.netbios_name, entry),
    )


def resolve_sid_reference(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[StepResult]:
    if not reference.is_sid:
        return None
    sid = reference.sid
    server = context.netbios_name

    static = lookup_well_known_sid(sid)
    if static is not None:
        return StepResult(
            ResolutionState.SID_TRANSLATE,
            record_from_entry(reference.raw, static, context, view),
            writes=account_writes(server, static),
        )

    translated = call_collaborator("translate_sid_to_name", directory.translate_sid_to_name, sid, context.dns_name)
    domain, writes = find_domain(get_domain_sid(sid), view, directory)

    if translated:
        domain_name, account_name = split_caption(translated)
        entry = AccountEntry(sid=sid, caption=translated, domain=domain_name, name=account_name)
        writes += (CacheWrite(ACCOUNTS_BY_SID, account_key(server, sid), entry),)
        # Keep a richer record already cached under the caption
        if not isinstance(view.account_by_caption(server, translated), AccountEntry):
            writes += (CacheWrite(ACCOUNTS_BY_CAPTION, account_key(server, translated), entry),)
        return StepResult(
            ResolutionState.SID_TRANSLATE,
            record_from_entry(reference.raw, entry, context, view, domain),
            writes=writes,
            reentry=translated,
        )

    capability = capability_entry(sid)
    if capability is not None:
        return StepResult(
            ResolutionState.SID_TRANSLATE,
            record_from_entry(reference.raw, capability, context, view),
            writes=writes + account_writes(server, capability),
        )

    debug(f"SID {sid} could not be translated on {context.dns_name}")
    failed = UnresolvedEntry(sid=sid, short_name=sid, fully_qualified_name=sid)
    return StepResult(
        ResolutionState.UNRESOLVED,
        record_from_unresolved(reference.raw, failed),
        writes=writes + (unresolved_write(ACCOUNTS_BY_SID, server, sid, failed),),
    )


def resolve_account_name(
    reference: IdentityReference, context: ServerContext, view: CacheView, directory
) -> Optional[StepResult]:
    if reference.is_sid:
        return None
    server = context.netbios_name
    name = reference.name
    domain_netbios = reference.domain or server
    is_local = domain_netbios.upper() == server.upper()

    domain, writes = find_domain(domain_netbios, view, directory)

    state = ResolutionState.NAME_TRANSLATE
    sid = call_collaborator("translate_name_to_sid", directory.translate_name_to_sid, server, name)
    if not sid and not is_local:
        sid = call_collaborator("translate_name_to_sid", directory.translate_name_to_sid, domain_netbios, name)

    if not sid and domain is not None and domain.is_directory_searchable:
        state = ResolutionState.DIRECTORY_SEARCH
        search_filter = f"(samaccountname={escape_filter_chars(name)})"
        bags = call_collaborator(
            "search_directory",
            directory.search_directory,
            domain.distinguished_name,
            search_filter,
            list(DEFAULT_MEMBER_ATTRIBUTES),
        )
        for bag in bags or []:
            sid = sid_from_bag(bag)
            if sid:
                break

    if not sid:
        state = ResolutionState.POINT_LOOKUP
        bag = call_collaborator(
            "point_lookup", directory.point_lookup, f"WinNT://{server}/{name}", ["objectSid", "name"]
        )
        sid = sid_from_bag(bag)

    caption = f"{domain_netbios}\\{name}"
    if not sid:
        debug(f"{reference.raw}: every account lookup failed on {context.dns_name}")
        fqn = f"{dns_qualifier(domain_netbios, context, view, domain)}\\{name}"
        failed = UnresolvedEntry(sid=None, short_name=caption, fully_qualified_name=fqn)
        return StepResult(
            ResolutionState.UNRESOLVED,
            record_from_unresolved(reference.raw, failed),
            writes=writes + (unresolved_write(ACCOUNTS_BY_CAPTION, server, caption, failed),),
        )

    entry = AccountEntry(sid=sid, caption=caption, domain=domain_netbios, name=name)
    return StepResult(
        state,
        record_from_entry(reference.raw, entry, context, view, domain),
        writes=writes + account_writes(server, entry),
    )


DEFAULT_STRATEGIES = (
    lookup_cache,
    dispatch_well_known_authority,
    resolve_sid_reference,
    resolve_account_name,
)
