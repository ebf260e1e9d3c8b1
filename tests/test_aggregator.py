"""Tests for SessionAggregator: skipping, merging and deduplication."""

from __future__ import annotations

import pytest

from sessionsweep.aggregator import SessionAggregator
from sessionsweep.config import CollectionOptions, ConfigurationError
from sessionsweep.models import Host, ProbeResponse, ProbeTask, RawActiveSession, RawLoginRecord, SessionEdge
from sessionsweep.probes import ActiveSessionProbe, LoggedOnProbe, RegistryLoggedOnProbe
from sessionsweep.status import StatusLog

from .conftest import ALICE_SID, BOB_SID, HOST_SID, FakeDirectory

ALICE_CANONICAL = "S-1-5-21-3623811015-3361044348-30300820-1001"


class FakeTransport:
    def __init__(self, sessions=None, logins=None, subkeys=None, session_status=0):
        self.sessions = sessions or []
        self.logins = logins or []
        self.subkeys = subkeys or []
        self.session_status = session_status
        self.calls = []

    def net_session_enum(self, target):
        self.calls.append(("sessions", target))
        return ProbeResponse(self.session_status, self.sessions)

    def net_wksta_user_enum(self, target):
        self.calls.append(("logins", target))
        return ProbeResponse(0, self.logins)

    def registry_user_keys(self, target):
        self.calls.append(("registry", target))
        return list(self.subkeys)


@pytest.fixture
def example_host():
    return Host(name="h.corp.local", object_identifier="H-ID", domain="CORP", sam_account_name="H")


@pytest.fixture
def example_directory():
    return FakeDirectory(accounts={("alice", "CORP"): ALICE_CANONICAL})


class TestDiscoverSessions:
    def test_unreachable_host_is_untouched(self, example_directory):
        transport = FakeTransport(logins=[RawLoginRecord("alice", "CORP")])
        sink = StatusLog()
        aggregator = SessionAggregator.build(transport, example_directory,
                                             CollectionOptions(dump_computer_status=True), sink=sink)
        existing = SessionEdge(BOB_SID, HOST_SID)
        host = Host(name="down", object_identifier=HOST_SID, domain="CORP",
                    reachable=False, sessions={existing})

        result = aggregator.discover_sessions(host)

        assert result is host
        assert host.sessions == {existing}
        assert transport.calls == []
        assert len(sink) == 0

    def test_duplicate_sessions_across_probes_collapse(self, example_host, example_directory):
        transport = FakeTransport(
            sessions=[RawActiveSession("127.0.0.1", "alice")],
            logins=[RawLoginRecord("alice", "CORP")],
        )
        options = CollectionOptions(disable_registry_logged_on=True)
        aggregator = SessionAggregator.build(transport, example_directory, options)

        result = aggregator.discover_sessions(example_host)

        assert result.sessions == {SessionEdge(ALICE_CANONICAL, "H-ID")}

    def test_union_with_existing_sessions(self, example_host, example_directory):
        existing = SessionEdge(BOB_SID, "H-ID")
        example_host.sessions = {existing}
        transport = FakeTransport(
            logins=[RawLoginRecord("alice", "CORP")],
            subkeys=[ALICE_SID, BOB_SID],
        )
        aggregator = SessionAggregator.build(transport, example_directory, CollectionOptions())

        aggregator.discover_sessions(example_host)

        assert example_host.sessions == {
            existing,
            SessionEdge(ALICE_CANONICAL, "H-ID"),
            SessionEdge(ALICE_SID, "H-ID"),
        }

    def test_one_outcome_per_probe(self, example_host, example_directory):
        sink = StatusLog()
        transport = FakeTransport(session_status=2114)
        aggregator = SessionAggregator.build(transport, example_directory,
                                             CollectionOptions(dump_computer_status=True), sink=sink)

        aggregator.discover_sessions(example_host)

        tasks = sorted(outcome.task.value for outcome in sink.outcomes)
        assert tasks == sorted(task.value for task in ProbeTask)
        failed = [o for o in sink.outcomes if not o.status.ok]
        assert [(o.task, str(o.status)) for o in failed] == [
            (ProbeTask.NET_SESSION_ENUM, "NERR_ServerNotStarted")
        ]

    def test_probe_failure_does_not_fail_host(self, example_host, example_directory):
        class FailingTransport(FakeTransport):
            def net_session_enum(self, target):
                raise ConnectionResetError("reset")

        transport = FailingTransport(logins=[RawLoginRecord("alice", "CORP")])
        aggregator = SessionAggregator.build(transport, example_directory, CollectionOptions())

        aggregator.discover_sessions(example_host)

        assert example_host.sessions == {SessionEdge(ALICE_CANONICAL, "H-ID")}

    def test_parallel_probes_give_same_result(self, example_host, example_directory):
        transport = FakeTransport(
            sessions=[RawActiveSession("127.0.0.1", "alice")],
            logins=[RawLoginRecord("alice", "CORP")],
            subkeys=[BOB_SID],
        )
        aggregator = SessionAggregator.build(transport, example_directory, CollectionOptions(), parallel=True)

        aggregator.discover_sessions(example_host)

        assert example_host.sessions == {
            SessionEdge(ALICE_CANONICAL, "H-ID"),
            SessionEdge(BOB_SID, "H-ID"),
        }

    def test_disabled_probes_are_skipped(self, example_host, example_directory):
        transport = FakeTransport(subkeys=[BOB_SID])
        options = CollectionOptions(disable_registry_logged_on=True)
        aggregator = SessionAggregator.build(transport, example_directory, options)

        aggregator.discover_sessions(example_host)

        assert ("registry", example_host.name) not in transport.calls
        assert example_host.sessions == set()


class TestBuild:
    def test_wires_standard_probes(self, example_directory):
        aggregator = SessionAggregator.build(FakeTransport(), example_directory, CollectionOptions())
        assert [type(p) for p in aggregator.probes] == [ActiveSessionProbe, LoggedOnProbe, RegistryLoggedOnProbe]

    @pytest.mark.parametrize("options", [
        CollectionOptions(probe_timeout=0),
        CollectionOptions(probe_timeout=-1),
        CollectionOptions(probe_timeout=None),
    ])
    def test_rejects_malformed_options(self, example_directory, options):
        with pytest.raises(ConfigurationError):
            SessionAggregator.build(FakeTransport(), example_directory, options)
