"""
Per-host session aggregation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from .config import CollectionOptions
from .models import Host, ProbeOutcome, SessionEdge
from .probes import ActiveSessionProbe, LoggedOnProbe, ProbeRunner, RegistryLoggedOnProbe
from .resolver import IdentityResolver


class SessionAggregator:
    """
    Runs every probe for a host and merges the results into its session set.

    The aggregator is the only writer of ``Host.sessions``; it does no filtering or
    resolution of its own.
    """

    def __init__(self, probes: Sequence[ProbeRunner], parallel: bool = False):
        """
        Initialize the aggregator.

        Args:
            probes: Probe runners to run for every host
            parallel: Run a host's probes concurrently instead of one after another
        """
        self.probes = list(probes)
        self.parallel = parallel
        self.logger = logging.getLogger('SessionAggregator')

    @classmethod
    def build(cls, transport, directory, options: CollectionOptions,
              sink: Optional[Callable[[ProbeOutcome], None]] = None,
              parallel: bool = False) -> 'SessionAggregator':
        """
        Wire the standard probes to a transport and a directory.

        Args:
            transport: Object with net_session_enum, net_wksta_user_enum and registry_user_keys
            directory: Directory collaborator for the identity resolver
            options: Collection options
            sink: Diagnostic outcome sink
            parallel: Run a host's probes concurrently

        Returns:
            Configured aggregator
        """
        options.validate()
        resolver = IdentityResolver(directory, options)
        probes = [
            ActiveSessionProbe(transport.net_session_enum, resolver, options, sink),
            LoggedOnProbe(transport.net_wksta_user_enum, resolver, options, sink),
            RegistryLoggedOnProbe(transport.registry_user_keys, resolver, options, sink),
        ]
        return cls(probes, parallel=parallel)

    def discover_sessions(self, host: Host) -> Host:
        """
        Discover sessions on a host.

        Unreachable hosts are returned untouched.

        Args:
            host: Target host

        Returns:
            The same host, with its session set replaced by the deduplicated union of
            the existing sessions and everything the probes found
        """
        if not host.reachable:
            self.logger.debug(f"Skipping unreachable host {host.name}")
            return host

        candidates = self._run_probes(host)

        sessions = set(host.sessions)
        sessions.update(candidates)
        host.sessions = sessions

        self.logger.debug(f"{host.name}: {len(candidates)} candidates, {len(sessions)} unique sessions")
        return host

    def _run_probes(self, host: Host) -> List[SessionEdge]:
        probes = [probe for probe in self.probes if probe.enabled]
        candidates: List[SessionEdge] = []

        if not self.parallel or len(probes) < 2:
            for probe in probes:
                candidates.extend(probe.run(host))
            return candidates

        with ThreadPoolExecutor(max_workers=len(probes), thread_name_prefix='aggregate') as pool:
            for edges in pool.map(lambda probe: probe.run(host), probes):
                candidates.extend(edges)
        return candidates
