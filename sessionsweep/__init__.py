"""
SessionSweep - Active Directory session discovery.

Enumerates the users holding sessions on domain computers through redundant remote
probes (NetSessionEnum, NetWkstaUserEnum and Remote Registry) and resolves each raw
username to a SID.
"""

__version__ = '1.0.0'

from .aggregator import SessionAggregator
from .config import CollectionOptions, ConfigurationError, Credentials
from .models import Host, ProbeOutcome, ProbeStatus, ProbeTask, SessionEdge
from .resolver import IdentityResolver, is_placeholder_identifier
from .status import StatusLog

__all__ = [
    'CollectionOptions',
    'ConfigurationError',
    'Credentials',
    'Host',
    'IdentityResolver',
    'ProbeOutcome',
    'ProbeStatus',
    'ProbeTask',
    'SessionAggregator',
    'SessionEdge',
    'StatusLog',
    'is_placeholder_identifier',
]
