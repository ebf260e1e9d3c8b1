"""
Directory lookups over LDAP (ldap3).

Provides the name-to-SID translations the identity resolver needs: global catalog
lookup by account name, domain-scoped account lookup, and host name to computer SID.
Results are cached per instance; LDAP connections are opened per lookup.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from ldap3 import ALL, NTLM, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .config import Credentials
from .rpc import DNSResolver, is_ip_address


LDAP_PORT = 389
GLOBAL_CATALOG_PORT = 3268

# sAMAccountType of normal user accounts
SAM_USER_OBJECT = 805306368


def domain_to_base_dn(domain: str) -> str:
    return ','.join([f'DC={part}' for part in domain.split('.') if part])


class LdapDirectory:
    """
    Resolves account and host names to SIDs against a domain controller.
    """

    def __init__(self, dc_ip: str, credentials: Credentials, domain: Optional[str] = None,
                 forest: Optional[str] = None, netbios_name: Optional[str] = None,
                 dns_resolver: Optional[DNSResolver] = None):
        """
        Initialize the directory.

        Args:
            dc_ip: Domain Controller IP address (also used as global catalog)
            credentials: Account used for the NTLM bind
            domain: DNS name of the domain (defaults to the credentials' domain)
            forest: DNS name of the forest root (defaults to the domain)
            netbios_name: NetBIOS name of the domain (defaults to its first label)
            dns_resolver: Resolver for reverse lookups of session client addresses
        """
        self.dc_ip = dc_ip
        self.credentials = credentials
        self.domain = (domain or credentials.domain).upper()
        self.forest = (forest or self.domain).upper()
        self.netbios_name = (netbios_name or self.domain.split('.')[0]).upper()
        self.dns_resolver = dns_resolver
        self.logger = logging.getLogger('LdapDirectory')

        self._lock = threading.Lock()
        self._gc_cache: Dict[str, List[str]] = {}
        self._user_sid_cache: Dict[Tuple[str, str], Optional[str]] = {}
        self._computer_sid_cache: Dict[str, Optional[str]] = {}

    def _connect(self, port: int = LDAP_PORT) -> Connection:
        server = Server(self.dc_ip, port=port, get_info=ALL)
        user = f'{self.credentials.domain}\\{self.credentials.username}'
        if self.credentials.nthash:
            password = self.credentials.lmhash + ':' + self.credentials.nthash
        else:
            password = self.credentials.password
        return Connection(server, user=user, password=password,
                          authentication=NTLM, auto_bind=True)

    def _search_sids(self, port: int, base_dn: str, ldap_filter: str) -> List[str]:
        conn = self._connect(port)
        try:
            conn.search(
                search_base=base_dn,
                search_filter=ldap_filter,
                search_scope=SUBTREE,
                attributes=['objectSid']
            )
            return [str(entry.objectSid.value) for entry in conn.entries
                    if hasattr(entry, 'objectSid') and entry.objectSid.value]
        finally:
            conn.unbind()

    def _is_own_domain(self, domain: Optional[str]) -> bool:
        if not domain:
            return False
        domain = domain.strip().upper()
        return domain in (self.domain, self.netbios_name)

    # ------------------------------------------------------------------------
    # User lookups
    # ------------------------------------------------------------------------

    def lookup_user_in_gc(self, name: str) -> List[str]:
        """
        Find every user in the forest with the given sAMAccountName.

        Args:
            name: Account name

        Returns:
            Matching SIDs (empty if none)
        """
        key = name.lower()
        with self._lock:
            if key in self._gc_cache:
                return list(self._gc_cache[key])

        ldap_filter = (f'(&(samAccountType={SAM_USER_OBJECT})'
                       f'(samAccountName={escape_filter_chars(name)}))')
        try:
            sids = self._search_sids(GLOBAL_CATALOG_PORT, domain_to_base_dn(self.forest), ldap_filter)
        except LDAPException as e:
            self.logger.debug(f"Global catalog lookup failed for {name}: {e}")
            return []

        with self._lock:
            self._gc_cache[key] = sids
        return list(sids)

    def account_name_to_sid(self, name: str, domain: Optional[str],
                            allow_guess: bool = False) -> Tuple[bool, Optional[str]]:
        """
        Translate DOMAIN\\name to a SID.

        Only the bound domain can be searched. Other domain hints fail unless
        allow_guess is set, in which case the bound domain is searched anyway.

        Args:
            name: Account name
            domain: Domain hint (DNS or NetBIOS)
            allow_guess: Search the bound domain even if the hint names another one

        Returns:
            Tuple of (success, sid)
        """
        if not self._is_own_domain(domain) and not allow_guess:
            self.logger.debug(f"Cannot translate {domain}\\{name}: not in {self.domain}")
            return False, None

        key = ((domain or '').upper(), name.lower())
        with self._lock:
            if key in self._user_sid_cache:
                sid = self._user_sid_cache[key]
                return sid is not None, sid

        ldap_filter = f'(&(objectClass=user)(sAMAccountName={escape_filter_chars(name)}))'
        try:
            sids = self._search_sids(LDAP_PORT, domain_to_base_dn(self.domain), ldap_filter)
        except LDAPException as e:
            self.logger.debug(f"LDAP user SID resolution failed for {name}: {e}")
            return False, None

        sid = sids[0] if sids else None
        with self._lock:
            self._user_sid_cache[key] = sid
        return sid is not None, sid

    # ------------------------------------------------------------------------
    # Computer lookups
    # ------------------------------------------------------------------------

    def resolve_host_to_sid(self, host_name: str, domain: Optional[str] = None) -> Optional[str]:
        """
        Resolve a host name or address to a computer SID.

        Addresses are turned into names with a reverse DNS lookup first.

        Args:
            host_name: Computer name (FQDN, short name or IP)
            domain: Domain of the host the session was seen on

        Returns:
            SID string or None
        """
        host_name = host_name.lstrip('\\').strip()
        if is_ip_address(host_name):
            if self.dns_resolver is None:
                self.logger.debug(f"Skipping SID resolution for IP address: {host_name}")
                return None
            resolved = self.dns_resolver.reverse_lookup(host_name.strip('[]'))
            if not resolved:
                return None
            host_name = resolved

        name_lower = host_name.lower()
        short_name = name_lower.split('.')[0]
        if '.' not in name_lower and domain:
            name_lower = f'{name_lower}.{domain.lower()}'

        with self._lock:
            for variant in (name_lower, short_name):
                if variant in self._computer_sid_cache:
                    return self._computer_sid_cache[variant]

        sid = self._resolve_computer_sid_ldap(name_lower, short_name)
        with self._lock:
            self._computer_sid_cache[name_lower] = sid
            self._computer_sid_cache[short_name] = sid
        return sid

    def _resolve_computer_sid_ldap(self, dns_name: str, short_name: str) -> Optional[str]:
        base_dn = domain_to_base_dn(self.domain)
        try:
            # Try by dNSHostName first, then by sAMAccountName (short name + $)
            sids = self._search_sids(
                LDAP_PORT, base_dn,
                f'(&(objectCategory=computer)(dNSHostName={escape_filter_chars(dns_name)}))'
            )
            if not sids:
                sids = self._search_sids(
                    LDAP_PORT, base_dn,
                    f'(&(objectCategory=computer)(sAMAccountName={escape_filter_chars(short_name)}$))'
                )
        except LDAPException as e:
            self.logger.debug(f"LDAP computer SID resolution failed for {dns_name}: {e}")
            return None

        if not sids:
            self.logger.debug(f"Failed to resolve computer SID for: {dns_name}")
            return None
        return sids[0]

    def lookup_computer(self, name: str) -> Optional[Dict[str, str]]:
        """
        Fetch the attributes needed to build a Host for a target name.

        Args:
            name: Computer name (FQDN or short name)

        Returns:
            Dict with object_identifier, dns_name and sam_account_name, or None
        """
        short_name = name.lower().split('.')[0]
        ldap_filter = (f'(&(objectCategory=computer)(|(dNSHostName={escape_filter_chars(name)})'
                       f'(sAMAccountName={escape_filter_chars(short_name)}$)))')
        try:
            conn = self._connect(LDAP_PORT)
        except LDAPException as e:
            self.logger.warning(f"LDAP bind failed while looking up {name}: {e}")
            return None

        try:
            conn.search(
                search_base=domain_to_base_dn(self.domain),
                search_filter=ldap_filter,
                search_scope=SUBTREE,
                attributes=['objectSid', 'dNSHostName', 'sAMAccountName']
            )
            if not conn.entries:
                return None
            entry = conn.entries[0]
            return {
                'object_identifier': str(entry.objectSid.value),
                'dns_name': str(entry.dNSHostName.value or name) if hasattr(entry, 'dNSHostName') else name,
                'sam_account_name': str(entry.sAMAccountName.value) if hasattr(entry, 'sAMAccountName') else '',
            }
        except LDAPException as e:
            self.logger.debug(f"LDAP computer lookup failed for {name}: {e}")
            return None
        finally:
            conn.unbind()
