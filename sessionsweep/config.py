"""
Collection options and credentials.

Options are built once (normally by the CLI) and handed to each component's
constructor. Nothing reads configuration from module-level state.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple


# Probe wall-clock budget in seconds
DEFAULT_PROBE_TIMEOUT = 10.0

# Empty LM hash used when only an NT hash is supplied
EMPTY_LM_HASH = 'aad3b435b51404eeaad3b435b51404ee'


class ConfigurationError(ValueError):
    """Raised for malformed collection options."""


@dataclass
class Credentials:
    """
    Credentials handed to the RPC and LDAP collaborators.

    Attributes:
        username: Domain username
        password: Password (can be empty if using hash)
        domain: Domain to authenticate against
        lmhash: LM hash for pass-the-hash
        nthash: NT hash for pass-the-hash
    """
    username: str
    password: str = ''
    domain: str = ''
    lmhash: str = ''
    nthash: str = ''


@dataclass
class CollectionOptions:
    """
    Options consumed by the probes and the aggregator.

    Attributes:
        current_user_name: Account performing the enumeration; its own sessions are skipped
        disable_registry_logged_on: Skip the HKEY_USERS logged-on source
        dump_computer_status: Emit one diagnostic outcome per probe per host
        probe_timeout: Seconds to wait on each remote enumeration call
        domain_aliases: NetBIOS domain name -> DNS domain name
    """
    current_user_name: str = ''
    disable_registry_logged_on: bool = False
    dump_computer_status: bool = False
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    domain_aliases: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> 'CollectionOptions':
        """
        Check option values.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigurationError: If any value is out of range
        """
        if self.probe_timeout is None or self.probe_timeout <= 0:
            raise ConfigurationError(f"probe_timeout must be positive, got {self.probe_timeout!r}")
        for netbios, dns_name in self.domain_aliases.items():
            if not netbios or not dns_name:
                raise ConfigurationError(f"Invalid domain alias: {netbios!r} -> {dns_name!r}")
        return self


def parse_hash(hash_str: str) -> Tuple[str, str]:
    """
    Parse hash string into LM and NT components.

    Args:
        hash_str: Hash string in format LMHASH:NTHASH or just NTHASH

    Returns:
        Tuple of (lmhash, nthash)
    """
    if ':' in hash_str:
        lmhash, nthash = hash_str.split(':', 1)
    else:
        lmhash = EMPTY_LM_HASH
        nthash = hash_str

    return lmhash, nthash


def parse_domain_aliases(values) -> Dict[str, str]:
    """
    Parse NETBIOS=dns.name pairs.

    Raises:
        ConfigurationError: On entries without '='
    """
    aliases = {}
    for value in values or []:
        if '=' not in value:
            raise ConfigurationError(f"Domain alias must look like NETBIOS=dns.name, got {value!r}")
        netbios, dns_name = value.split('=', 1)
        aliases[netbios.strip().upper()] = dns_name.strip()
    return aliases
