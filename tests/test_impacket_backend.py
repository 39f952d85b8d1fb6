"""
Test suite for the impacket-backed directory collaborator.

Tests cover:
- ImpacketDirectory.connect (SMB required, LDAP optional)
- LSA name and SID translation, including partial and empty mappings
- Batch point lookups over WinNT and LDAP paths
- Domain descriptors and SAMR group enumeration
- close()
"""

from unittest.mock import MagicMock, patch

import pytest
from impacket.dcerpc.v5.rpcrt import DCERPCException
from impacket.dcerpc.v5.samr import SID_NAME_USE

from sidhound.collaborators.impacket_backend import ImpacketDirectory
from sidhound.config import Credentials
from sidhound.exceptions import CollaboratorUnavailableError, LDAPConnectionError
from sidhound.models import DomainDescriptor, GroupMember
from sidhound.sid.codec import sid_to_bytes

USER = SID_NAME_USE.enumItems.SidTypeUser.value
ALIAS = SID_NAME_USE.enumItems.SidTypeAlias.value
DOMAIN = SID_NAME_USE.enumItems.SidTypeDomain.value
UNKNOWN = SID_NAME_USE.enumItems.SidTypeUnknown.value

CORP_SID = "S-1-5-21-1111111111-2222222222-3333333333"


class _RpcError(DCERPCException):
    """DCERPCException with a fixed message and optional packet."""

    def __init__(self, text, packet=None):
        super().__init__()
        self.text = text
        self.packet = packet

    def __str__(self):
        return self.text

    def get_packet(self):
        return self.packet


def _sid_mock(sid):
    mock = MagicMock()
    mock.formatCanonical.return_value = sid
    return mock


def _names_response(domains, sids):
    return {
        "ReferencedDomains": {"Domains": [{"Name": name, "Sid": _sid_mock(sid)} for name, sid in domains]},
        "TranslatedSids": {"Sids": sids},
    }


def _sids_response(domains, names):
    return {
        "ReferencedDomains": {"Domains": [{"Name": name, "Sid": _sid_mock(sid)} for name, sid in domains]},
        "TranslatedNames": {"Names": names},
    }


@pytest.fixture
def directory():
    """Directory over a mocked SMB session with the LSA policy handle stubbed."""
    backend = ImpacketDirectory(smb_connection=MagicMock(), server_dns="srv01.corp.local")
    backend._lsa = (MagicMock(), "policy-handle")
    return backend


# ============================================================================
# Test: connect
# ============================================================================


class TestConnect:
    """Tests for ImpacketDirectory.connect"""

    @patch("sidhound.collaborators.impacket_backend.get_ldap_connection")
    @patch("sidhound.collaborators.impacket_backend.smb_connect")
    def test_smb_failure_raises(self, mock_smb_connect, mock_ldap):
        """An SMB failure makes the collaborator unavailable"""
        mock_smb_connect.side_effect = OSError("connection refused")
        creds = Credentials(username="admin", password="pw", domain="corp.local")

        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            ImpacketDirectory.connect("srv01.corp.local", creds)

        assert excinfo.value.operation == "smb_connect"
        mock_ldap.assert_not_called()

    @patch("sidhound.collaborators.impacket_backend.get_ldap_connection")
    @patch("sidhound.collaborators.impacket_backend.smb_connect")
    def test_ldap_failure_is_tolerated(self, mock_smb_connect, mock_ldap):
        """Without LDAP the backend still works over SMB"""
        mock_ldap.side_effect = LDAPConnectionError("refused")
        creds = Credentials(username="admin", password="pw", domain="corp.local", dc_ip="10.0.0.1")

        backend = ImpacketDirectory.connect("srv01.corp.local", creds)

        assert backend.smb is mock_smb_connect.return_value
        assert backend.ldap is None
        assert backend.base_dn == "DC=corp,DC=local"

    @patch("sidhound.collaborators.impacket_backend.get_ldap_connection")
    @patch("sidhound.collaborators.impacket_backend.smb_connect")
    def test_hashes_preferred_over_password(self, mock_smb_connect, mock_ldap):
        """Hashes are passed to SMB in place of the password"""
        creds = Credentials(username="admin", password="pw", hashes=":" + "0" * 32, domain="CORP")

        ImpacketDirectory.connect("10.0.0.5", creds, timeout=9)

        args, kwargs = mock_smb_connect.call_args
        assert args == ("10.0.0.5", "CORP", "admin", ":" + "0" * 32)
        assert kwargs["timeout"] == 9

    @patch("sidhound.collaborators.impacket_backend.get_ldap_connection")
    @patch("sidhound.collaborators.impacket_backend.smb_connect")
    def test_ldap_skipped_for_netbios_domain(self, mock_smb_connect, mock_ldap):
        """LDAP needs a DNS domain"""
        ImpacketDirectory.connect("10.0.0.5", Credentials(username="admin", password="pw", domain="CORP"))
        mock_ldap.assert_not_called()

    @patch("sidhound.collaborators.impacket_backend.get_ldap_connection")
    @patch("sidhound.collaborators.impacket_backend.smb_connect")
    def test_ldap_disabled(self, mock_smb_connect, mock_ldap):
        """use_ldap=False never opens LDAP"""
        creds = Credentials(username="admin", password="pw", domain="corp.local")
        ImpacketDirectory.connect("10.0.0.5", creds, use_ldap=False)
        mock_ldap.assert_not_called()


# ============================================================================
# Test: LSA translation
# ============================================================================


class TestLookupNames:
    """Tests for LsarLookupNames handling"""

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupNames")
    def test_mapped_and_unmapped(self, mock_lookup, directory):
        """Users get domain SID + RID; unknown names give None"""
        mock_lookup.return_value = _names_response(
            [("CORP", CORP_SID)],
            [
                {"DomainIndex": 0, "Use": USER, "RelativeId": 1104},
                {"DomainIndex": -1, "Use": UNKNOWN, "RelativeId": 0},
            ],
        )

        results = directory._lookup_names(["CORP\\alice", "CORP\\ghost"])

        assert results == [(f"{CORP_SID}-1104", USER, "CORP"), None]
        assert mock_lookup.call_args[0][2] == ["CORP\\alice", "CORP\\ghost"]

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupNames")
    def test_domain_name_maps_to_domain_sid(self, mock_lookup, directory):
        """A domain name translates to the domain SID itself"""
        mock_lookup.return_value = _names_response(
            [("CORP", CORP_SID)], [{"DomainIndex": 0, "Use": DOMAIN, "RelativeId": 0}]
        )
        assert directory._lookup_names(["CORP"]) == [(CORP_SID, DOMAIN, "CORP")]

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupNames")
    def test_none_mapped(self, mock_lookup, directory):
        """STATUS_NONE_MAPPED means every name is unknown"""
        mock_lookup.side_effect = _RpcError("LSAT SessionError: code: 0xc0000073 - STATUS_NONE_MAPPED")
        assert directory._lookup_names(["a", "b"]) == [None, None]

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupNames")
    def test_some_not_mapped_uses_partial_answer(self, mock_lookup, directory):
        """STATUS_SOME_NOT_MAPPED still carries the mapped names"""
        packet = _names_response(
            [("CORP", CORP_SID)],
            [
                {"DomainIndex": -1, "Use": UNKNOWN, "RelativeId": 0},
                {"DomainIndex": 0, "Use": USER, "RelativeId": 1105},
            ],
        )
        mock_lookup.side_effect = _RpcError("STATUS_SOME_NOT_MAPPED", packet=packet)

        assert directory._lookup_names(["CORP\\ghost", "CORP\\bob"]) == [None, (f"{CORP_SID}-1105", USER, "CORP")]

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupNames")
    def test_other_rpc_errors_raise(self, mock_lookup, directory):
        """Access denied and friends surface as CollaboratorUnavailableError"""
        mock_lookup.side_effect = _RpcError("rpc_s_access_denied")
        with pytest.raises(CollaboratorUnavailableError):
            directory._lookup_names(["CORP\\alice"])

    def test_empty_input(self, directory):
        """No names, no RPC"""
        directory._lsa = None
        assert directory._lookup_names([]) == []

    def test_no_smb_session(self):
        """Without SMB the LSA pipe cannot be opened"""
        with pytest.raises(CollaboratorUnavailableError):
            ImpacketDirectory()._lookup_names(["CORP\\alice"])


class TestLookupSids:
    """Tests for LsarLookupSids handling"""

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupSids")
    def test_translated_names(self, mock_lookup, directory):
        """Mapped SIDs give (domain, name, use)"""
        mock_lookup.return_value = _sids_response(
            [("CORP", CORP_SID)],
            [
                {"DomainIndex": 0, "Use": USER, "Name": "alice"},
                {"DomainIndex": -1, "Use": UNKNOWN, "Name": ""},
            ],
        )

        results = directory._lookup_sids([f"{CORP_SID}-1104", f"{CORP_SID}-9999"])

        assert results == [("CORP", "alice", USER), None]

    @patch("sidhound.collaborators.impacket_backend.lsat.hLsarLookupSids")
    def test_none_mapped(self, mock_lookup, directory):
        """STATUS_NONE_MAPPED means every SID is unknown"""
        mock_lookup.side_effect = _RpcError("STATUS_NONE_MAPPED")
        assert directory._lookup_sids(["S-1-5-21-9-9-9-1"]) == [None]


class TestTranslation:
    """Tests for the public translation methods"""

    def test_sid_to_name(self, directory):
        """DOMAIN\\name is assembled from the LSA answer"""
        with patch.object(directory, "_lookup_sids", return_value=[("CORP", "alice", USER)]) as mock_lookup:
            assert directory.translate_sid_to_name(f"{CORP_SID}-1104") == "CORP\\alice"
        mock_lookup.assert_called_once_with([f"{CORP_SID}-1104"])

    def test_sid_to_name_without_domain(self, directory):
        """Domain-less principals come back as a bare name"""
        with patch.object(directory, "_lookup_sids", return_value=[("", "Everyone", 5)]):
            assert directory.translate_sid_to_name("S-1-1-0") == "Everyone"

    def test_sid_to_name_not_a_sid(self, directory):
        """Non-SID input is never sent over RPC"""
        with patch.object(directory, "_lookup_sids") as mock_lookup:
            assert directory.translate_sid_to_name("CORP\\alice") is None
        mock_lookup.assert_not_called()

    def test_sid_to_name_unmapped(self, directory):
        """Unmapped SIDs translate to None"""
        with patch.object(directory, "_lookup_sids", return_value=[None]):
            assert directory.translate_sid_to_name(f"{CORP_SID}-9999") is None

    def test_name_to_sid(self, directory):
        """domain\\name is looked up as one string"""
        with patch.object(directory, "_lookup_names", return_value=[(f"{CORP_SID}-1105", USER, "CORP")]) as m:
            assert directory.translate_name_to_sid("CORP", "bob") == f"{CORP_SID}-1105"
        m.assert_called_once_with(["CORP\\bob"])

    def test_service_sid(self, directory):
        """Service SIDs are translated under NT SERVICE"""
        with patch.object(directory, "_lookup_names", return_value=[("S-1-5-80-1-2-3-4-5", 5, "NT SERVICE")]) as m:
            assert directory.lookup_service_sid("MSSQLSERVER", "SRV01") == "S-1-5-80-1-2-3-4-5"
        m.assert_called_once_with(["NT SERVICE\\MSSQLSERVER"])


# ============================================================================
# Test: search and point lookups
# ============================================================================


class TestDirectoryLookups:
    """Tests for search_directory and point lookups"""

    def test_search_without_ldap(self, directory):
        """No LDAP connection means no search results"""
        assert directory.search_directory("DC=corp,DC=local", "(samaccountname=a)", ["objectSid"]) == []

    @patch("sidhound.collaborators.impacket_backend.search_entries")
    def test_search_with_ldap(self, mock_search, directory):
        """Searches are delegated to search_entries"""
        directory.ldap = MagicMock()
        mock_search.return_value = [{"sAMAccountName": "alice"}]

        bags = directory.search_directory("DC=corp,DC=local", "(samaccountname=alice)", ["sAMAccountName"])

        assert bags == [{"sAMAccountName": "alice"}]
        mock_search.assert_called_once_with(
            directory.ldap, "DC=corp,DC=local", "(samaccountname=alice)", ["sAMAccountName"]
        )

    def test_point_lookup_many_batches_winnt_paths(self, directory):
        """WinNT paths share a single LSA lookup; misses and bad paths are skipped"""
        translations = [(f"{CORP_SID}-1104", USER, "CORP"), None]
        with patch.object(directory, "_lookup_names", return_value=translations) as mock_lookup:
            bags = directory.point_lookup_many(
                ["WinNT://CORP/alice", "not-a-path", "WinNT://WKS07/ghost", "LDAP://CN=x,DC=corp,DC=local"],
                ["objectSid"],
            )

        mock_lookup.assert_called_once_with(["CORP\\alice", "WKS07\\ghost"])
        assert len(bags) == 1
        bag = bags[0]
        assert bag["adsPath"] == "WinNT://CORP/alice"
        assert bag["objectSid"] == sid_to_bytes(f"{CORP_SID}-1104")
        assert bag["sAMAccountName"] == "alice"
        assert bag["objectClass"] == ["user"]

    @patch("sidhound.collaborators.impacket_backend.search_entries")
    def test_ldap_point_lookup(self, mock_search, directory):
        """LDAP paths are fetched with a base-scoped search"""
        directory.ldap = MagicMock()
        mock_search.return_value = [{"name": "x"}]

        with patch.object(directory, "_lookup_names", return_value=[]):
            bag = directory.point_lookup("LDAP://CN=x,DC=corp,DC=local", ["name"])

        assert bag == {"name": "x", "adsPath": "LDAP://CN=x,DC=corp,DC=local"}
        assert mock_search.call_args[1]["base_scope"] is True

    def test_point_lookup_not_found(self, directory):
        """A missing object is None"""
        with patch.object(directory, "_lookup_names", return_value=[None]):
            assert directory.point_lookup("WinNT://SRV01/nobody", ["objectSid"]) is None


# ============================================================================
# Test: domains
# ============================================================================


class TestLookupDomainInfo:
    """Tests for lookup_domain_info without LDAP"""

    def test_policy_descriptors_matched_by_any_key(self, directory):
        """The LSA policy domains are matched by NetBIOS name, DNS name or SID"""
        corp = DomainDescriptor("CORP", "corp.local", CORP_SID)
        with patch.object(directory, "_policy_domain_descriptors", return_value=[corp]):
            assert directory.lookup_domain_info("corp") is corp
            assert directory.lookup_domain_info("CORP.LOCAL") is corp
            assert directory.lookup_domain_info(CORP_SID) is corp
            assert directory.lookup_domain_info("OTHER") is None

    def test_no_connections(self):
        """Without SMB or LDAP nothing is known"""
        assert ImpacketDirectory().lookup_domain_info("CORP") is None

    def test_ldap_answer_preferred(self, directory):
        """An LDAP descriptor wins over the LSA policy"""
        directory.ldap = MagicMock()
        ldap_corp = DomainDescriptor("CORP", "corp.local", CORP_SID, "DC=corp,DC=local")
        with patch.object(directory, "_ldap_domain_info", return_value=ldap_corp), patch.object(
            directory, "_policy_domain_descriptors"
        ) as mock_policy:
            assert directory.lookup_domain_info("CORP") is ldap_corp
        mock_policy.assert_not_called()


class TestLdapDomainFilters:
    """Tests for the LDAP filters built by _ldap_domain_info"""

    @pytest.fixture
    def ldap_directory(self, directory):
        directory.ldap = MagicMock()
        directory.domain = "corp.local"
        directory.base_dn = "DC=corp,DC=local"
        return directory

    @patch("sidhound.collaborators.impacket_backend.search_entries", return_value=[])
    def test_name_metacharacters_escaped(self, mock_search, ldap_directory):
        """Filter metacharacters in a domain name are escaped in every filter"""
        assert ldap_directory._ldap_domain_info("we*ird(x)") is None

        filters = [c.args[2] for c in mock_search.call_args_list]
        assert "(|(nETBIOSName=we\\2aird\\28x\\29)(dnsRoot=we\\2aird\\28x\\29))" in filters[0]
        assert filters[1] == (
            "(&(objectClass=trustedDomain)(|(flatName=we\\2aird\\28x\\29)(trustPartner=we\\2aird\\28x\\29)))"
        )

    @patch("sidhound.collaborators.impacket_backend.search_entries", return_value=[])
    def test_domain_sid_matched_as_bytes(self, mock_search, ldap_directory):
        """A foreign domain SID is matched against securityIdentifier byte by byte"""
        sid = "S-1-5-21-7-8-9"
        ldap_directory._ldap_domain_info(sid)

        expected = "".join(f"\\{b:02x}" for b in sid_to_bytes(sid))
        trust_filter = mock_search.call_args_list[-1].args[2]
        assert trust_filter == f"(&(objectClass=trustedDomain)(securityIdentifier={expected}))"
        assert mock_search.call_args_list[-1].args[1] == "CN=System,DC=corp,DC=local"


# ============================================================================
# Test: group enumeration
# ============================================================================


class TestEnumerateGroupMembers:
    """Tests for enumerate_group_members"""

    def test_winnt_alias_members(self, directory):
        """SAMR members are translated and tagged with WinNT paths"""
        sids = [f"{CORP_SID}-1104", "S-1-5-21-4-5-6-500", "S-1-5-21-7-8-9-1001"]
        translations = [("CORP", "alice", USER), ("SRV01", "Administrator", USER), None]
        with patch.object(directory, "_alias_member_sids", return_value=sids) as mock_alias, patch.object(
            directory, "_lookup_sids", return_value=translations
        ):
            members = directory.enumerate_group_members("WinNT://SRV01/Administrators")

        mock_alias.assert_called_once_with("Administrators")
        assert [m.path for m in members] == [
            "WinNT://CORP/alice",
            "WinNT://SRV01/Administrator",
            "WinNT://SRV01/S-1-5-21-7-8-9-1001",
        ]
        assert members[0].attributes["objectSid"] == sid_to_bytes(sids[0])
        assert members[0].attributes["sAMAccountName"] == "alice"
        assert "sAMAccountName" not in members[2].attributes

    def test_unknown_group(self, directory):
        """A group that does not exist has no members"""
        with patch.object(directory, "_alias_member_sids", return_value=None):
            assert directory.enumerate_group_members("WinNT://SRV01/Nope") == []

    @patch("sidhound.collaborators.impacket_backend.search_entries")
    def test_ldap_group_members(self, mock_search, directory):
        """LDAP groups list their member DNs"""
        directory.ldap = MagicMock()
        mock_search.return_value = [{"member": ["CN=Alice,OU=Staff,DC=corp,DC=local"]}]

        members = directory.enumerate_group_members("LDAP://CN=Helpdesk,DC=corp,DC=local")

        assert members == [
            GroupMember(
                "LDAP://CN=Alice,OU=Staff,DC=corp,DC=local",
                {"distinguishedName": "CN=Alice,OU=Staff,DC=corp,DC=local"},
            )
        ]

    def test_ldap_group_without_ldap(self, directory):
        """LDAP groups cannot be enumerated without LDAP"""
        assert directory.enumerate_group_members("LDAP://CN=Helpdesk,DC=corp,DC=local") == []


# ============================================================================
# Test: close
# ============================================================================


class TestClose:
    """Tests for close()"""

    def test_releases_everything(self, directory):
        """close() disconnects LSA, LDAP and SMB and is idempotent"""
        dce, _ = directory._lsa
        smb = directory.smb
        ldap = MagicMock()
        directory.ldap = ldap

        directory.close()
        directory.close()

        dce.disconnect.assert_called_once()
        ldap.close.assert_called_once()
        smb.logoff.assert_called_once()
        assert directory.smb is None
        assert directory.ldap is None

    def test_context_manager(self):
        """The collaborator closes itself on exit"""
        smb = MagicMock()
        with ImpacketDirectory(smb_connection=smb):
            pass
        smb.logoff.assert_called_once()
