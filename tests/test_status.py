"""Tests for status names and the outcome sink."""

from __future__ import annotations

import threading

from sessionsweep.models import ProbeOutcome, ProbeStatus, ProbeTask
from sessionsweep.status import StatusLog, is_end_of_data, status_name


class TestStatusName:
    def test_known_codes(self):
        assert status_name(5) == "ERROR_ACCESS_DENIED"
        assert status_name(53) == "ERROR_BAD_NETPATH"
        assert status_name(0xC0000022) == "STATUS_ACCESS_DENIED"

    def test_negative_ntstatus_is_normalized(self):
        assert status_name(-1073741790) == "STATUS_ACCESS_DENIED"

    def test_unknown_code(self):
        assert status_name(4242) == "0x00001092"


class TestEndOfData:
    def test_success_codes(self):
        assert is_end_of_data(0)
        assert is_end_of_data(234)
        assert is_end_of_data(259)

    def test_errors(self):
        assert not is_end_of_data(5)
        assert not is_end_of_data(1722)


class TestProbeOutcome:
    def test_to_dict(self):
        outcome = ProbeOutcome("ws01", ProbeTask.NET_SESSION_ENUM, ProbeStatus.remote_error(5, "ERROR_ACCESS_DENIED"))
        assert outcome.to_dict() == {
            "ComputerName": "ws01",
            "Task": "NetSessionEnum",
            "Status": "ERROR_ACCESS_DENIED",
        }

    def test_success_and_timeout_render_as_kind(self):
        assert str(ProbeStatus.success()) == "Success"
        assert str(ProbeStatus.timed_out()) == "TimedOut"


class TestStatusLog:
    def test_concurrent_writers(self):
        log = StatusLog()

        def write(index):
            for _ in range(50):
                log(ProbeOutcome(f"host{index}", ProbeTask.NET_WKSTA_USER_ENUM, ProbeStatus.success()))

        threads = [threading.Thread(target=write, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log) == 400
        assert len({o.computer_name for o in log.outcomes}) == 8
