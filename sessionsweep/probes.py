"""
Session discovery probes.

Each probe runs one remote enumeration call on its own daemon thread with a hard
deadline, turns the returned records into session edges and reports how the attempt
ended.

A call that misses its deadline is abandoned, not cancelled. The waiting side never
touches its result again; if the call later completes, a done-callback releases
whatever remote handle it produced. Abandoned threads are daemons, so a hung call
neither delays other hosts nor keeps the interpreter alive.
"""

import logging
import re
import threading
from concurrent.futures import Future, wait
from typing import Callable, List, Optional, Tuple

from .config import CollectionOptions
from .models import (
    Host,
    ProbeOutcome,
    ProbeResponse,
    ProbeStatus,
    ProbeTask,
    RawActiveSession,
    RawLoginRecord,
    SessionEdge,
)
from .resolver import IdentityResolver, is_local_account, should_skip_user
from .status import is_end_of_data, status_name


# Domain user SIDs loaded under HKEY_USERS (excludes the *_Classes hives)
USER_HIVE_SID = re.compile(r'S-1-5-21-[0-9]+-[0-9]+-[0-9]+-[0-9]+$')


class ProbeTimeout(Exception):
    """The remote call did not return within the probe timeout."""


class ProbeRunner:
    """
    Base class for a single probe kind.

    Subclasses set ``task`` and implement ``collect(host)``, returning the status and
    the candidate edges.
    """

    task: ProbeTask = None

    def __init__(self, resolver: IdentityResolver, options: Optional[CollectionOptions] = None,
                 sink: Optional[Callable[[ProbeOutcome], None]] = None):
        """
        Initialize the probe.

        Args:
            resolver: Identity resolver for raw records
            options: Collection options
            sink: Receives one ProbeOutcome per run when status dumping is enabled
        """
        self.resolver = resolver
        self.options = options or CollectionOptions()
        self.sink = sink
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return True

    def run(self, host: Host) -> List[SessionEdge]:
        """
        Run the probe against a host.

        Never raises for remote or local failures; those end up in the outcome.

        Args:
            host: Target host

        Returns:
            Candidate session edges (possibly with duplicates)
        """
        if not self.enabled:
            return []

        try:
            status, edges = self.collect(host)
        except Exception as e:
            self.logger.debug(f"{self.task.value} failed on {host.name}: {e}")
            status, edges = ProbeStatus.local_error(str(e) or e.__class__.__name__), []

        self.logger.debug(f"{self.task.value} on {host.name}: {status}, {len(edges)} candidates")
        self._record(host, status)
        return edges

    def collect(self, host: Host) -> Tuple[ProbeStatus, List[SessionEdge]]:
        raise NotImplementedError

    def call_with_timeout(self, func: Callable, *args):
        """
        Run a remote call on a dedicated daemon thread and wait for it up to the probe timeout.

        The deadline starts when the thread starts, so calls hung on other hosts
        cannot eat into it.

        Args:
            func: Remote call
            *args: Arguments for the call

        Returns:
            Whatever the call returned

        Raises:
            ProbeTimeout: If the deadline passed first
            Exception: Whatever the call raised
        """
        future = Future()
        future.set_running_or_notify_cancel()

        def worker():
            try:
                result = func(*args)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

        thread = threading.Thread(target=worker, name=f'probe-{self.task.value}', daemon=True)
        thread.start()

        done, _ = wait([future], timeout=self.options.probe_timeout)
        if future not in done:
            future.add_done_callback(self._reclaim_late_result)
            raise ProbeTimeout(f"{self.task.value} exceeded {self.options.probe_timeout}s")
        return future.result()

    def _reclaim_late_result(self, future: Future):
        if future.cancelled() or future.exception() is not None:
            return
        result = future.result()
        if isinstance(result, ProbeResponse):
            try:
                result.release()
            except Exception as e:
                self.logger.debug(f"Failed to release late {self.task.value} result: {e}")
            else:
                self.logger.debug(f"Released late {self.task.value} result")

    def _record(self, host: Host, status: ProbeStatus):
        if not self.options.dump_computer_status or self.sink is None:
            return
        self.sink(ProbeOutcome(computer_name=host.name, task=self.task, status=status))

    def _call_transport(self, transport: Callable, host: Host) -> Tuple[ProbeStatus, Optional[ProbeResponse]]:
        try:
            response = self.call_with_timeout(transport, host.name)
        except ProbeTimeout as e:
            self.logger.debug(f"{host.name}: {e}")
            return ProbeStatus.timed_out(), None
        except Exception as e:
            self.logger.debug(f"{self.task.value} error on {host.name}: {e}")
            return ProbeStatus.local_error(str(e) or e.__class__.__name__), None

        if not is_end_of_data(response.status):
            response.release()
            return ProbeStatus.remote_error(response.status, status_name(response.status)), None

        return ProbeStatus.success(), response


class ActiveSessionProbe(ProbeRunner):
    """
    Sessions established against the host (NetSessionEnum).

    Both sides of a session are resolved: the username to user SIDs and the client
    name to the computer SID the session came from.
    """

    task = ProbeTask.NET_SESSION_ENUM

    def __init__(self, transport: Callable[[str], ProbeResponse], resolver: IdentityResolver,
                 options: Optional[CollectionOptions] = None,
                 sink=None):
        super().__init__(resolver, options, sink)
        self.transport = transport

    def collect(self, host: Host) -> Tuple[ProbeStatus, List[SessionEdge]]:
        status, response = self._call_transport(self.transport, host)
        if response is None:
            return status, []

        edges = []
        with response:
            for record in response.records:
                edges.extend(self._convert(record, host))
        return status, edges

    def _convert(self, record: RawActiveSession, host: Host) -> List[SessionEdge]:
        if not record.client_name:
            return []
        if should_skip_user(record.username, self.options.current_user_name):
            return []

        computer_sid = self.resolver.resolve_host(record.client_name, host)
        if computer_sid is None:
            self.logger.debug(f"Dropping session of {record.username} on {host.name}: "
                              f"cannot resolve client {record.client_name}")
            return []

        return [
            SessionEdge(user_id=user_sid, computer_id=computer_sid)
            for user_sid in self.resolver.resolve_user(record.username, host.domain)
        ]


class LoggedOnProbe(ProbeRunner):
    """Users logged on at the host (NetWkstaUserEnum)."""

    task = ProbeTask.NET_WKSTA_USER_ENUM

    def __init__(self, transport: Callable[[str], ProbeResponse], resolver: IdentityResolver,
                 options: Optional[CollectionOptions] = None,
                 sink=None):
        super().__init__(resolver, options, sink)
        self.transport = transport

    def collect(self, host: Host) -> Tuple[ProbeStatus, List[SessionEdge]]:
        status, response = self._call_transport(self.transport, host)
        if response is None:
            return status, []

        edges = []
        with response:
            for record in response.records:
                edges.extend(self._convert(record, host))
        return status, edges

    def _convert(self, record: RawLoginRecord, host: Host) -> List[SessionEdge]:
        # Local accounts are not directory principals
        if is_local_account(record.domain, host):
            return []
        if should_skip_user(record.username, self.options.current_user_name):
            return []

        return [
            SessionEdge(user_id=user_sid, computer_id=host.object_identifier)
            for user_sid in self.resolver.resolve_user(record.username, record.domain)
        ]


class RegistryLoggedOnProbe(ProbeRunner):
    """
    Users with a hive loaded under HKEY_USERS.

    The subkey names already are SIDs, so nothing is filtered or resolved.
    """

    task = ProbeTask.REGISTRY_LOGGED_ON

    def __init__(self, transport: Callable[[str], List[str]], resolver: IdentityResolver,
                 options: Optional[CollectionOptions] = None,
                 sink=None):
        super().__init__(resolver, options, sink)
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return not self.options.disable_registry_logged_on

    def collect(self, host: Host) -> Tuple[ProbeStatus, List[SessionEdge]]:
        try:
            subkeys = self.call_with_timeout(self.transport, host.name)
        except ProbeTimeout as e:
            self.logger.debug(f"{host.name}: {e}")
            return ProbeStatus.timed_out(), []
        except Exception as e:
            self.logger.debug(f"Registry enumeration error on {host.name}: {e}")
            return ProbeStatus.local_error(str(e) or e.__class__.__name__), []

        edges = [
            SessionEdge(user_id=subkey, computer_id=host.object_identifier)
            for subkey in subkeys or []
            if USER_HIVE_SID.search(subkey)
        ]
        return ProbeStatus.success(), edges
