"""
Identity resolution for raw session records.

Turns a (username, domain) pair into one or more user SIDs through an ordered
fallback chain, and a session's client host name into a computer SID.
"""

import logging
import re
from typing import Dict, List, Optional

from .config import CollectionOptions
from .models import Host


ANONYMOUS_LOGON = 'ANONYMOUS LOGON'

MACHINE_ACCOUNT_SUFFIX = '$'

LOOPBACK_NAMES = {'127.0.0.1', '[::1]', '::1', 'localhost'}

SID_PATTERN = re.compile(r'^S-1-\d+(-\d+)+$', re.IGNORECASE)


def is_placeholder_identifier(identifier: str) -> bool:
    """
    Check whether an identifier is a synthesized NAME@DOMAIN placeholder.

    Args:
        identifier: User identifier from a session edge

    Returns:
        True if the identifier is not a SID
    """
    return not SID_PATTERN.match(identifier or '')


def should_skip_user(username: Optional[str], current_user_name: str = '') -> bool:
    """
    Check whether a raw username is noise that should never be resolved.

    Skips blank names, machine accounts, anonymous logons and the account running the
    enumeration.

    Args:
        username: Username as reported by the remote host
        current_user_name: Account performing the enumeration

    Returns:
        True if the record should be discarded
    """
    if username is None or not username.strip():
        return True
    if username.endswith(MACHINE_ACCOUNT_SUFFIX):
        return True
    if username.upper() == ANONYMOUS_LOGON:
        return True
    if current_user_name and username.lower() == current_user_name.lower():
        return True
    return False


def is_local_account(domain: Optional[str], host: Host) -> bool:
    """A logon domain equal to the machine's own name means a local account."""
    if not domain or not host.local_namespace:
        return False
    return domain.strip().lower() == host.local_namespace.lower()


class IdentityResolver:
    """
    Resolves session usernames and client host names to SIDs.

    The directory collaborator provides lookup_user_in_gc(name),
    account_name_to_sid(name, domain, allow_guess) and
    resolve_host_to_sid(host_name, domain). Any of them may raise; failures fall
    through to the next strategy.
    """

    def __init__(self, directory, options: Optional[CollectionOptions] = None):
        """
        Initialize the resolver.

        Args:
            directory: Directory collaborator (see class docstring)
            options: Collection options (for domain aliases)
        """
        self.directory = directory
        self.options = options or CollectionOptions()
        self.domain_aliases: Dict[str, str] = {
            k.upper(): v for k, v in self.options.domain_aliases.items()
        }
        self.logger = logging.getLogger('IdentityResolver')

    def normalize_domain(self, domain: Optional[str]) -> str:
        """
        Map a NetBIOS domain name to its DNS name when known.

        Args:
            domain: Domain as reported by the remote host

        Returns:
            DNS domain name, or the input unchanged
        """
        if not domain:
            return ''
        domain = domain.strip()
        return self.domain_aliases.get(domain.upper(), domain)

    def resolve_user(self, username: str, domain: Optional[str]) -> List[str]:
        """
        Resolve a username to one or more user identifiers.

        Order:
            1. Global catalog lookup by account name (all matches are returned)
            2. Name translation scoped to the domain
            3. NAME@DOMAIN placeholder

        Args:
            username: Account name
            domain: Domain hint

        Returns:
            Non-empty list of identifiers
        """
        sids = self._lookup_in_gc(username)
        if sids:
            return sids

        sid = self._translate_name(username, domain)
        if sid:
            return [sid]

        placeholder = f"{username}@{self.normalize_domain(domain)}".upper()
        self.logger.debug(f"Unresolved user {username} ({domain}), using {placeholder}")
        return [placeholder]

    def resolve_host(self, client_name: Optional[str], host: Host) -> Optional[str]:
        """
        Resolve the client side of a session to a computer SID.

        Args:
            client_name: Client name or address reported by NetSessionEnum
            host: Host the session was found on

        Returns:
            Computer SID, or None if it cannot be resolved
        """
        if not client_name:
            return None

        client_name = client_name.lstrip('\\').strip()
        if not client_name:
            return None

        if client_name.lower() in LOOPBACK_NAMES:
            return host.object_identifier

        try:
            sid = self.directory.resolve_host_to_sid(client_name, host.domain)
        except Exception as e:
            self.logger.debug(f"Host resolution error for {client_name}: {e}")
            return None

        return sid or None

    def _lookup_in_gc(self, username: str) -> List[str]:
        try:
            sids = self.directory.lookup_user_in_gc(username)
        except Exception as e:
            self.logger.debug(f"Global catalog lookup error for {username}: {e}")
            return []
        return [sid for sid in sids or [] if sid]

    def _translate_name(self, username: str, domain: Optional[str]) -> Optional[str]:
        try:
            success, sid = self.directory.account_name_to_sid(username, domain, False)
        except Exception as e:
            self.logger.debug(f"Name translation error for {domain}\\{username}: {e}")
            return None
        return sid if success and sid else None
