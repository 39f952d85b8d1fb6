"""
Impacket-backed directory collaborator.

One ImpacketDirectory serves one interrogated server:

- SID <-> name translation runs over LSARPC on the server's SMB session, so
  local accounts, BUILTIN aliases and service SIDs resolve the way the server
  itself sees them
- group membership comes from SAMR alias enumeration on the same session
- directory searches, LDAP point lookups and domain descriptors use an LDAP
  connection to a domain controller when one is available

Every "not found" answer is returned as None or an empty list. RPC, SMB and
LDAP transport failures surface as CollaboratorUnavailableError.
"""

import contextlib
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from impacket.dcerpc.v5 import lsad, lsat, samr, transport
from impacket.dcerpc.v5.dtypes import MAXIMUM_ALLOWED
from impacket.dcerpc.v5.rpcrt import DCERPCException
from impacket.dcerpc.v5.samr import SID_NAME_USE
from impacket.smbconnection import SessionError
from ldap3.utils.conv import escape_bytes, escape_filter_chars

from ..exceptions import CollaboratorUnavailableError, InvalidDirectoryPathError, LDAPConnectionError
from ..groups.paths import DirectoryPath, parse_directory_path, winnt_path
from ..models import AttributeBag, DirectoryFlavor, DomainDescriptor, GroupMember, dn_from_dns
from ..sid.codec import bytes_to_sid, is_sid, sid_to_bytes
from ..sid.well_known import AUTHORITY_NT_SERVICE
from ..smb.connection import smb_connect
from ..utils.ldap import get_ldap_connection, search_entries
from ..utils.logging import debug, warn
from .base import DirectoryCollaborator

# LSA returns name uses as plain integers
SID_TYPE_UNKNOWN = SID_NAME_USE.enumItems.SidTypeUnknown.value
SID_TYPE_DOMAIN = SID_NAME_USE.enumItems.SidTypeDomain.value

# objectClass reported for each name use
_USE_CLASSES = {
    SID_NAME_USE.enumItems.SidTypeUser.value: "user",
    SID_NAME_USE.enumItems.SidTypeGroup.value: "group",
    SID_NAME_USE.enumItems.SidTypeAlias.value: "group",
    SID_NAME_USE.enumItems.SidTypeWellKnownGroup.value: "group",
    SID_NAME_USE.enumItems.SidTypeComputer.value: "computer",
    SID_TYPE_DOMAIN: "domain",
}

# (sid, use, domain name) for one translated name
NameTranslation = Tuple[str, int, str]


def _rpc_text(value) -> str:
    # NDR strings may come back as structures or bytes
    if hasattr(value, "fields"):
        value = value["Data"]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if value else ""


class ImpacketDirectory(DirectoryCollaborator):
    """
    Directory collaborator for one server.

    Args:
        smb_connection: Authenticated SMBConnection to the interrogated server
        ldap_connection: Optional LDAPConnection to a domain controller
        domain: DNS name of the domain the LDAP connection is bound to
        server_dns: DNS name of the interrogated server
    """

    def __init__(self, smb_connection=None, ldap_connection=None, domain: Optional[str] = None, server_dns: Optional[str] = None):
        self.smb = smb_connection
        self.ldap = ldap_connection
        self.domain = domain
        self.base_dn = dn_from_dns(domain) if domain else None
        self.server_dns = server_dns
        self._lsa = None
        self._policy_domains: Optional[List[DomainDescriptor]] = None
        self._own_sid: Optional[str] = None
        self._lock = threading.RLock()

    @classmethod
    def connect(cls, target: str, credentials, timeout: int = 60, use_ldap: bool = True) -> "ImpacketDirectory":
        """
        Open the SMB session to ``target`` and, when possible, LDAP to the DC.

        LDAP is optional: without it only LSARPC/SAMR lookups are available.

        Raises:
            CollaboratorUnavailableError: the SMB session could not be established
        """
        try:
            smb = smb_connect(
                target,
                credentials.domain,
                credentials.username,
                credentials.hashes or credentials.password,
                kerberos=credentials.kerberos,
                dc_ip=credentials.dc_ip,
                timeout=timeout,
                aes_key=credentials.aes_key,
            )
        except (SessionError, OSError) as e:
            raise CollaboratorUnavailableError("smb_connect", f"{target}: {e}") from e

        ldap_conn = None
        if use_ldap and credentials.domain and "." in credentials.domain:
            try:
                ldap_conn = get_ldap_connection(
                    credentials.dc_ip,
                    credentials.domain,
                    credentials.username,
                    password=credentials.password,
                    hashes=credentials.hashes,
                    kerberos=credentials.kerberos,
                    aes_key=credentials.aes_key,
                )
            except LDAPConnectionError as e:
                warn(f"{target}: continuing without LDAP ({e})", verbose_only=True)

        return cls(smb, ldap_conn, domain=credentials.domain, server_dns=target)

    # ==========================================
    # RPC plumbing
    # ==========================================

    def _open_pipe(self, pipe: str, interface_uuid):
        if self.smb is None:
            raise CollaboratorUnavailableError(pipe, "no SMB session")
        try:
            rpctransport = transport.SMBTransport(
                self.smb.getRemoteName(),
                self.smb.getRemoteHost(),
                filename=f"\\{pipe}",
                smb_connection=self.smb,
            )
            dce = rpctransport.get_dce_rpc()
            dce.connect()
            dce.bind(interface_uuid)
            return dce
        except (DCERPCException, SessionError, OSError) as e:
            raise CollaboratorUnavailableError(pipe, str(e)) from e

    def _lsa_policy(self):
        with self._lock:
            if self._lsa is None:
                dce = self._open_pipe("lsarpc", lsat.MSRPC_UUID_LSAT)
                try:
                    resp = lsad.hLsarOpenPolicy2(dce, MAXIMUM_ALLOWED | lsat.POLICY_LOOKUP_NAMES)
                except DCERPCException as e:
                    raise CollaboratorUnavailableError("lsarpc", f"LsarOpenPolicy2 failed: {e}") from e
                self._lsa = (dce, resp["PolicyHandle"])
            return self._lsa

    def _lookup_names(self, names: Sequence[str]) -> List[Optional[NameTranslation]]:
        """Translate ``DOMAIN\\name`` strings in one LsarLookupNames call; unmapped names give None."""
        if not names:
            return []
        dce, policy_handle = self._lsa_policy()
        with self._lock:
            try:
                resp = lsat.hLsarLookupNames(dce, policy_handle, list(names))
            except DCERPCException as e:
                if "STATUS_NONE_MAPPED" in str(e):
                    return [None] * len(names)
                if "STATUS_SOME_NOT_MAPPED" in str(e):
                    resp = e.get_packet()
                else:
                    raise CollaboratorUnavailableError("lsa_lookup_names", str(e)) from e

        domains = resp["ReferencedDomains"]["Domains"]
        results: List[Optional[NameTranslation]] = []
        for item in resp["TranslatedSids"]["Sids"]:
            index = item["DomainIndex"]
            if item["Use"] == SID_TYPE_UNKNOWN or not 0 <= index < len(domains):
                results.append(None)
                continue
            domain_sid = domains[index]["Sid"].formatCanonical()
            domain_name = _rpc_text(domains[index]["Name"])
            if item["Use"] == SID_TYPE_DOMAIN:
                results.append((domain_sid, item["Use"], domain_name))
            else:
                results.append((f"{domain_sid}-{item['RelativeId']}", item["Use"], domain_name))
        return results

    def _lookup_sids(self, sids: Sequence[str]) -> List[Optional[Tuple[str, str, int]]]:
        """Translate SIDs in one LsarLookupSids call into (domain, name, use); unmapped SIDs give None."""
        if not sids:
            return []
        dce, policy_handle = self._lsa_policy()
        with self._lock:
            try:
                resp = lsat.hLsarLookupSids(dce, policy_handle, list(sids), lsat.LSAP_LOOKUP_LEVEL.LsapLookupWksta)
            except DCERPCException as e:
                if "STATUS_NONE_MAPPED" in str(e):
                    return [None] * len(sids)
                if "STATUS_SOME_NOT_MAPPED" in str(e):
                    resp = e.get_packet()
                else:
                    raise CollaboratorUnavailableError("lsa_lookup_sids", str(e)) from e

        domains = resp["ReferencedDomains"]["Domains"]
        results = []
        for item in resp["TranslatedNames"]["Names"]:
            if item["Use"] == SID_TYPE_UNKNOWN:
                results.append(None)
                continue
            index = item["DomainIndex"]
            domain_name = _rpc_text(domains[index]["Name"]) if 0 <= index < len(domains) else ""
            results.append((domain_name, _rpc_text(item["Name"]), item["Use"]))
        return results

    # ==========================================
    # Translation
    # ==========================================

    def translate_sid_to_name(self, sid: str, server: Optional[str] = None) -> Optional[str]:
        if not is_sid(sid):
            return None
        result = self._lookup_sids([sid])[0]
        if result is None:
            debug(f"LSA: {sid} is not mapped")
            return None
        domain_name, name, _ = result
        return f"{domain_name}\\{name}" if domain_name else name

    def translate_name_to_sid(self, domain_or_server: str, name: str) -> Optional[str]:
        result = self._lookup_names([f"{domain_or_server}\\{name}"])[0]
        return result[0] if result else None

    def lookup_service_sid(self, service_name: str, server: str) -> Optional[str]:
        return self.translate_name_to_sid(AUTHORITY_NT_SERVICE, service_name)

    # ==========================================
    # Directory search and point lookups
    # ==========================================

    def search_directory(self, root_dn: str, search_filter: str, attributes: Sequence[str]) -> List[AttributeBag]:
        if self.ldap is None:
            debug(f"LDAP: no connection for search under {root_dn}")
            return []
        return search_entries(self.ldap, root_dn, search_filter, attributes)

    @staticmethod
    def _winnt_bag(path: DirectoryPath, translation: NameTranslation) -> AttributeBag:
        sid, use, domain_name = translation
        return {
            "adsPath": path.raw,
            "objectSid": sid_to_bytes(sid),
            "name": path.name,
            "sAMAccountName": path.name,
            "objectClass": [_USE_CLASSES.get(use, "user")],
            "domain": domain_name,
        }

    def _ldap_point_lookup(self, path: DirectoryPath, attributes: Sequence[str]) -> Optional[AttributeBag]:
        if self.ldap is None:
            return None
        bags = search_entries(self.ldap, path.distinguished_name, "(objectClass=*)", attributes, base_scope=True)
        if not bags:
            return None
        bag = bags[0]
        bag["adsPath"] = path.raw
        return bag

    def point_lookup(self, directory_path: str, attributes: Sequence[str]) -> Optional[AttributeBag]:
        bags = self.point_lookup_many([directory_path], attributes)
        return bags[0] if bags else None

    def point_lookup_many(self, directory_paths: Iterable[str], attributes: Sequence[str]) -> List[AttributeBag]:
        """WinNT paths share one LSA name lookup; LDAP paths are fetched with base-scoped searches."""
        winnt: List[DirectoryPath] = []
        results: List[AttributeBag] = []
        for raw in directory_paths:
            try:
                path = parse_directory_path(raw)
            except InvalidDirectoryPathError as e:
                debug(f"Point lookup skipped: {e}")
                continue
            if path.flavor is DirectoryFlavor.LDAP:
                bag = self._ldap_point_lookup(path, attributes)
                if bag is not None:
                    results.append(bag)
            else:
                winnt.append(path)

        translations = self._lookup_names([f"{p.authority}\\{p.name}" for p in winnt])
        for path, translation in zip(winnt, translations):
            if translation is not None:
                results.append(self._winnt_bag(path, translation))
        return results

    # ==========================================
    # Domains
    # ==========================================

    def _policy_domain_descriptors(self) -> List[DomainDescriptor]:
        """The server's own account domain and, for domain members, its primary domain."""
        if self._policy_domains is not None:
            return self._policy_domains

        dce, policy_handle = self._lsa_policy()
        descriptors = []
        with self._lock:
            try:
                resp = lsad.hLsarQueryInformationPolicy2(
                    dce, policy_handle, lsad.POLICY_INFORMATION_CLASS.PolicyAccountDomainInformation
                )
                info = resp["PolicyInformation"]["PolicyAccountDomainInfo"]
                descriptors.append(
                    DomainDescriptor(
                        netbios_name=_rpc_text(info["DomainName"]).upper(),
                        dns_name=self.server_dns or _rpc_text(info["DomainName"]),
                        sid_prefix=info["DomainSid"].formatCanonical(),
                    )
                )

                resp = lsad.hLsarQueryInformationPolicy2(
                    dce, policy_handle, lsad.POLICY_INFORMATION_CLASS.PolicyDnsDomainInformation
                )
                info = resp["PolicyInformation"]["PolicyDnsDomainInfo"]
                dns_name = _rpc_text(info["DnsDomainName"])
                if dns_name and info["Sid"]:
                    descriptors.append(
                        DomainDescriptor(
                            netbios_name=_rpc_text(info["Name"]).upper(),
                            dns_name=dns_name,
                            sid_prefix=info["Sid"].formatCanonical(),
                            distinguished_name=dn_from_dns(dns_name) if self.ldap is not None else None,
                        )
                    )
            except DCERPCException as e:
                raise CollaboratorUnavailableError("lookup_domain_info", f"LsarQueryInformationPolicy2 failed: {e}") from e

        self._policy_domains = descriptors
        return descriptors

    def _own_domain_sid(self) -> Optional[str]:
        if self._own_sid is not None:
            return self._own_sid or None
        self._own_sid = ""
        bags = search_entries(self.ldap, self.base_dn, "(objectClass=domain)", ["objectSid"], base_scope=True)
        if bags and isinstance(bags[0].get("objectSid"), bytes):
            self._own_sid = bytes_to_sid(bags[0]["objectSid"])
        return self._own_sid or None

    def _ldap_domain_info(self, identifier: str) -> Optional[DomainDescriptor]:
        system_dn = f"CN=System,{self.base_dn}"

        if is_sid(identifier):
            if identifier.upper() == (self._own_domain_sid() or "").upper():
                own = self._crossref(f"(dnsRoot={escape_filter_chars(self.domain)})")
                if own is not None:
                    return own
            escaped = escape_bytes(sid_to_bytes(identifier))
            trust_filter = f"(&(objectClass=trustedDomain)(securityIdentifier={escaped}))"
        else:
            value = escape_filter_chars(identifier)
            crossref = self._crossref(f"(|(nETBIOSName={value})(dnsRoot={value}))")
            if crossref is not None:
                return crossref
            trust_filter = f"(&(objectClass=trustedDomain)(|(flatName={value})(trustPartner={value})))"

        for bag in search_entries(self.ldap, system_dn, trust_filter, ["flatName", "trustPartner", "securityIdentifier"]):
            flat, partner = bag.get("flatName"), bag.get("trustPartner")
            if not flat or not partner:
                continue
            sid = bag.get("securityIdentifier")
            return DomainDescriptor(
                netbios_name=flat.upper(),
                dns_name=partner,
                sid_prefix=bytes_to_sid(sid) if isinstance(sid, bytes) else None,
            )
        return None

    def _crossref(self, match_filter: str) -> Optional[DomainDescriptor]:
        config_dn = f"CN=Partitions,CN=Configuration,{self.base_dn}"
        search_filter = f"(&(objectClass=crossRef)(nETBIOSName=*){match_filter})"
        for bag in search_entries(self.ldap, config_dn, search_filter, ["nETBIOSName", "dnsRoot", "nCName"]):
            dns_name = bag.get("dnsRoot")
            naming_context = bag.get("nCName")
            sid_prefix = None
            if naming_context and naming_context.upper() == (self.base_dn or "").upper():
                sid_prefix = self._own_domain_sid()
            return DomainDescriptor(
                netbios_name=bag["nETBIOSName"].upper(),
                dns_name=dns_name,
                sid_prefix=sid_prefix,
                distinguished_name=naming_context or (dn_from_dns(dns_name) if dns_name else None),
            )
        return None

    def lookup_domain_info(self, identifier: str) -> Optional[DomainDescriptor]:
        if self.ldap is not None:
            descriptor = self._ldap_domain_info(identifier)
            if descriptor is not None:
                return descriptor

        if self.smb is None:
            return None
        wanted = identifier.upper()
        for descriptor in self._policy_domain_descriptors():
            keys = {descriptor.netbios_name.upper(), (descriptor.dns_name or "").upper(), (descriptor.sid_prefix or "").upper()}
            if wanted in keys:
                return descriptor
        return None

    # ==========================================
    # Group membership
    # ==========================================

    def _alias_member_sids(self, group_name: str) -> Optional[List[str]]:
        dce = self._open_pipe("samr", samr.MSRPC_UUID_SAMR)
        try:
            server_handle = samr.hSamrConnect(dce)["ServerHandle"]
            domains = samr.hSamrEnumerateDomainsInSamServer(dce, server_handle)["Buffer"]["Buffer"]
            # Builtin first: most interesting local groups are aliases there
            names = sorted((_rpc_text(d["Name"]) for d in domains), key=lambda n: n.upper() != "BUILTIN")
            for domain_name in names:
                domain_id = samr.hSamrLookupDomainInSamServer(dce, server_handle, domain_name)["DomainId"]
                domain_handle = samr.hSamrOpenDomain(dce, server_handle, MAXIMUM_ALLOWED, domain_id)["DomainHandle"]
                try:
                    resp = samr.hSamrLookupNamesInDomain(dce, domain_handle, [group_name])
                except DCERPCException as e:
                    if "STATUS_NONE_MAPPED" in str(e):
                        continue
                    raise
                rid = resp["RelativeIds"]["Element"][0]["Data"]
                try:
                    alias_handle = samr.hSamrOpenAlias(dce, domain_handle, MAXIMUM_ALLOWED, rid)["AliasHandle"]
                except DCERPCException as e:
                    if "STATUS_NO_SUCH_ALIAS" in str(e):
                        continue
                    raise
                members = samr.hSamrGetMembersInAlias(dce, alias_handle)["Members"]["Sids"]
                return [m["SidPointer"].formatCanonical() for m in members]
            return None
        except DCERPCException as e:
            raise CollaboratorUnavailableError("enumerate_group_members", str(e)) from e
        finally:
            with contextlib.suppress(DCERPCException, OSError):
                dce.disconnect()

    def enumerate_group_members(self, group_path: str) -> List[GroupMember]:
        path = parse_directory_path(group_path)

        if path.flavor is DirectoryFlavor.LDAP:
            if self.ldap is None:
                return []
            bags = search_entries(self.ldap, path.distinguished_name, "(objectClass=group)", ["member"], base_scope=True)
            if not bags:
                return []
            return [GroupMember(f"LDAP://{dn}", {"distinguishedName": dn}) for dn in bags[0].get("member", [])]

        sids = self._alias_member_sids(path.name)
        if not sids:
            return []

        server = path.server.upper()
        members = []
        for sid, translation in zip(sids, self._lookup_sids(sids)):
            attributes: Dict[str, object] = {"objectSid": sid_to_bytes(sid)}
            if translation is None:
                # Orphaned SID: keep it addressable by its SID
                members.append(GroupMember(winnt_path(server, sid), attributes))
                continue
            domain_name, name, use = translation
            attributes.update({"name": name, "sAMAccountName": name, "objectClass": [_USE_CLASSES.get(use, "user")]})
            owner = server if domain_name.upper() == server else domain_name
            member_path = winnt_path(owner, name)
            members.append(GroupMember(member_path, attributes))
        debug(f"SAMR: {group_path} has {len(members)} member(s)")
        return members

    def close(self) -> None:
        with self._lock:
            if self._lsa is not None:
                dce, _ = self._lsa
                with contextlib.suppress(DCERPCException, OSError):
                    dce.disconnect()
                self._lsa = None
        if self.ldap is not None:
            with contextlib.suppress(Exception):
                self.ldap.close()
            self.ldap = None
        if self.smb is not None:
            with contextlib.suppress(Exception):
                self.smb.logoff()
            self.smb = None
