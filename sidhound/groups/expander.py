"""
Group membership expansion.

Walks the immediate members of a group and turns each one into an
IdentityRecord. Members are partitioned by whether the domain that owns them
has a distinguished name:

- searchable members are batched per domain DN into one OR-combined
  ``(samaccountname=...)`` directory search
- everything else (workgroup computers, local accounts, unknown domains) goes
  into a single batch point lookup

The returned attribute bags seed the resolution cache, then every member is
normalized by the IdentityResolver. Nested groups are not followed; callers
wanting transitive membership expand the returned groups themselves.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ldap3.utils.conv import escape_filter_chars

from ..collaborators.base import DEFAULT_MEMBER_ATTRIBUTES
from ..exceptions import InvalidDirectoryPathError, SidHoundError
from ..models import AccountEntry, AttributeBag, DomainDescriptor, GroupMember, IdentityRecord, ServerContext
from ..resolver.engine import IdentityResolver
from ..resolver.steps import call_collaborator, find_domain, sid_from_bag, unresolved_record
from ..utils.logging import debug, good, log_member_failure, warn
from .paths import DirectoryPath, parse_directory_path


@dataclass
class _PendingMember:
    order: int
    member: GroupMember
    path: DirectoryPath
    netbios: str
    account_name: Optional[str]
    bag: Optional[AttributeBag] = None

    @property
    def reference(self) -> str:
        return f"{self.netbios}\\{self.account_name or self.path.name}"


def build_samaccountname_filter(names: List[str]) -> str:
    """``(samaccountname=a)`` for one name, ``(|(samaccountname=a)(samaccountname=b))`` for several."""
    terms = [f"(samaccountname={escape_filter_chars(name)})" for name in names]
    if len(terms) == 1:
        return terms[0]
    return "(|" + "".join(terms) + ")"


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


class GroupMembershipExpander:
    """
    Expand a group's immediate members through a directory collaborator.

    Args:
        directory: DirectoryCollaborator providing enumeration and lookups
        resolver: IdentityResolver used to normalize members; its cache is
            the one seeded from the lookup results
    """

    def __init__(self, directory, resolver: Optional[IdentityResolver] = None):
        self.directory = directory
        self.resolver = resolver or IdentityResolver(directory)
        self.cache = self.resolver.cache

    def expand(self, group_path: str, context: Optional[ServerContext] = None) -> List[IdentityRecord]:
        """
        Return one IdentityRecord per immediate member of ``group_path``.

        Raises:
            InvalidDirectoryPathError: the group path itself cannot be parsed
        """
        group = parse_directory_path(group_path)
        if context is None:
            host = group.server or group.authority
            context = ServerContext(netbios_name=host.split(".", 1)[0].upper(), dns_name=host, flavor=group.flavor)

        members = call_collaborator(
            "enumerate_group_members", self.directory.enumerate_group_members, group_path
        )
        if not members:
            debug(f"{group_path}: no members")
            return []
        debug(f"{group_path}: {len(members)} member(s)")

        searchable, point_only = self._classify(members)
        self._search_batches(searchable)
        self._point_lookup_batch(point_only)

        pending = [*(m for batch in searchable.values() for m in batch), *point_only]
        pending.sort(key=lambda p: p.order)
        records = [self._resolve_member(p, context) for p in pending]

        resolved = sum(1 for r in records if r.resolved)
        good(f"{group_path}: {resolved}/{len(records)} member(s) resolved")
        return records

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _domain_for(self, path: DirectoryPath, seen: Dict[str, Optional[DomainDescriptor]]):
        key = path.authority.upper()
        if key not in seen:
            try:
                domain, writes = find_domain(path.authority, self.cache.view(), self.directory)
            except SidHoundError as e:
                # Unclassified members still get a point lookup
                warn(f"Could not look up domain {path.authority}: {e}")
                domain, writes = None, ()
            self.cache.apply(writes)
            seen[key] = domain
        return seen[key]

    def _classify(
        self, members: List[GroupMember]
    ) -> Tuple["OrderedDict[str, List[_PendingMember]]", List[_PendingMember]]:
        searchable: "OrderedDict[str, List[_PendingMember]]" = OrderedDict()
        point_only: List[_PendingMember] = []
        seen: Dict[str, Optional[DomainDescriptor]] = {}

        for order, member in enumerate(members):
            try:
                path = parse_directory_path(member.path)
            except InvalidDirectoryPathError as e:
                warn(f"Skipping member with unparseable path: {e}")
                continue

            domain = self._domain_for(path, seen)
            account_name = _first(member.attributes.get("sAMAccountName"))
            if account_name is None and path.distinguished_name is None:
                account_name = path.name
            netbios = domain.netbios_name if domain else path.authority.split(".", 1)[0].upper()
            pending = _PendingMember(order, member, path, netbios, account_name)

            if domain is not None and domain.is_directory_searchable and account_name:
                searchable.setdefault(domain.distinguished_name, []).append(pending)
            else:
                point_only.append(pending)

        debug(
            f"Classified members: {sum(len(b) for b in searchable.values())} searchable "
            f"in {len(searchable)} batch(es), {len(point_only)} point lookup(s)"
        )
        return searchable, point_only

    # ------------------------------------------------------------------
    # Batched lookups
    # ------------------------------------------------------------------

    def _search_batches(self, searchable: "OrderedDict[str, List[_PendingMember]]") -> None:
        for root_dn, batch in searchable.items():
            search_filter = build_samaccountname_filter([p.account_name for p in batch])
            bags = call_collaborator(
                "search_directory",
                self.directory.search_directory,
                root_dn,
                search_filter,
                list(DEFAULT_MEMBER_ATTRIBUTES),
            )
            by_name = {}
            for bag in bags or []:
                sam = _first(bag.get("sAMAccountName"))
                if sam:
                    by_name[str(sam).upper()] = bag
            for pending in batch:
                pending.bag = by_name.get(pending.account_name.upper())

    def _point_lookup_batch(self, point_only: List[_PendingMember]) -> None:
        if not point_only:
            return
        bags = call_collaborator(
            "point_lookup_many",
            self.directory.point_lookup_many,
            [p.member.path for p in point_only],
            list(DEFAULT_MEMBER_ATTRIBUTES),
        )
        by_path = {}
        by_name = {}
        for bag in bags or []:
            ads_path = bag.get("adsPath")
            if ads_path:
                by_path[str(ads_path).upper()] = bag
            name = _first(bag.get("sAMAccountName")) or _first(bag.get("name"))
            if name:
                by_name.setdefault(str(name).upper(), bag)
        for pending in point_only:
            pending.bag = by_path.get(pending.member.path.upper()) or by_name.get(
                (pending.account_name or pending.path.name).upper()
            )

    # ------------------------------------------------------------------
    # Per-member resolution
    # ------------------------------------------------------------------

    def _seed(self, pending: _PendingMember, context: ServerContext) -> None:
        bag = pending.bag or pending.member.attributes
        sid = sid_from_bag(bag)
        if not sid:
            return
        name = _first(bag.get("sAMAccountName")) or pending.account_name or _first(bag.get("name"))
        if not name:
            return
        pending.account_name = str(name)
        entry = AccountEntry(sid=sid, caption=pending.reference, domain=pending.netbios, name=pending.account_name)
        self.cache.add_account(context.netbios_name, entry)

    def _resolve_member(self, pending: _PendingMember, context: ServerContext) -> IdentityRecord:
        reference = pending.reference
        try:
            self._seed(pending, context)
            reference = pending.reference
            return self.resolver.resolve(reference, context)
        except SidHoundError as e:
            # One bad member must not stop the rest of the group
            log_member_failure(pending.member.path, e)
            return unresolved_record(reference)


def expand_group_members(
    group_path: str,
    directory,
    resolver: Optional[IdentityResolver] = None,
    context: Optional[ServerContext] = None,
) -> List[IdentityRecord]:
    """Expand ``group_path`` with a one-off expander (pass ``resolver`` to share its cache)."""
    return GroupMembershipExpander(directory, resolver).expand(group_path, context)
