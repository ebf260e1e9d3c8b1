"""Shared fakes for the directory and the remote enumeration calls."""

from __future__ import annotations

import threading

import pytest

from sessionsweep.config import CollectionOptions
from sessionsweep.models import Host, ProbeResponse
from sessionsweep.resolver import IdentityResolver

HOST_SID = "S-1-5-21-1111111111-2222222222-3333333333-1105"
ALICE_SID = "S-1-5-21-1111111111-2222222222-3333333333-1001"
BOB_SID = "S-1-5-21-1111111111-2222222222-3333333333-1002"
WS02_SID = "S-1-5-21-1111111111-2222222222-3333333333-1106"


class FakeDirectory:
    """In-memory directory that records every call it receives."""

    def __init__(self, gc=None, accounts=None, hosts=None):
        self.gc = gc or {}
        self.accounts = accounts or {}
        self.hosts = hosts or {}
        self.calls = []

    def lookup_user_in_gc(self, name):
        self.calls.append(("gc", name))
        return list(self.gc.get(name.lower(), []))

    def account_name_to_sid(self, name, domain, allow_guess):
        self.calls.append(("translate", name, domain, allow_guess))
        sid = self.accounts.get((name.lower(), (domain or "").upper()))
        return sid is not None, sid

    def resolve_host_to_sid(self, host_name, domain):
        self.calls.append(("host", host_name, domain))
        return self.hosts.get(host_name.lower())

    def names_seen(self):
        return [call[1] for call in self.calls if call[0] in ("gc", "translate")]


class Releasable:
    """Counts how often a ProbeResponse release callback fires."""

    def __init__(self):
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.count += 1


def make_response(status, records=None):
    release = Releasable()
    return ProbeResponse(status, records, release=release), release


@pytest.fixture
def host():
    return Host(
        name="ws01.corp.local",
        object_identifier=HOST_SID,
        domain="CORP.LOCAL",
        sam_account_name="WS01$",
    )


@pytest.fixture
def options():
    return CollectionOptions(
        current_user_name="svc_enum",
        dump_computer_status=True,
        probe_timeout=2.0,
        domain_aliases={"CORP": "corp.local"},
    )


@pytest.fixture
def directory():
    return FakeDirectory(
        accounts={("alice", "CORP"): ALICE_SID, ("alice", "CORP.LOCAL"): ALICE_SID},
        hosts={"ws02.corp.local": WS02_SID, "ws02": WS02_SID},
    )


@pytest.fixture
def resolver(directory, options):
    return IdentityResolver(directory, options)

