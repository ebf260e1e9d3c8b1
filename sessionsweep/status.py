"""
NET_API_STATUS names and the diagnostic outcome sink.
"""

import logging
import threading
from typing import Dict, List

from .models import ProbeOutcome


NERR_SUCCESS = 0
ERROR_MORE_DATA = 234
ERROR_NO_MORE_ITEMS = 259
RPC_S_CALL_FAILED = 1726

# Codes that mean the enumeration finished normally
END_OF_DATA_CODES = frozenset({NERR_SUCCESS, ERROR_MORE_DATA, ERROR_NO_MORE_ITEMS})

NET_API_STATUS: Dict[int, str] = {
    0: 'NERR_Success',
    5: 'ERROR_ACCESS_DENIED',
    50: 'ERROR_NOT_SUPPORTED',
    53: 'ERROR_BAD_NETPATH',
    64: 'ERROR_NETNAME_DELETED',
    67: 'ERROR_BAD_NET_NAME',
    87: 'ERROR_INVALID_PARAMETER',
    124: 'ERROR_INVALID_LEVEL',
    234: 'ERROR_MORE_DATA',
    259: 'ERROR_NO_MORE_ITEMS',
    1326: 'ERROR_LOGON_FAILURE',
    1722: 'RPC_S_SERVER_UNAVAILABLE',
    1726: 'RPC_S_CALL_FAILED',
    2102: 'NERR_WkstaNotStarted',
    2114: 'NERR_ServerNotStarted',
    2123: 'NERR_BufTooSmall',
    2138: 'NERR_NetNotStarted',
    2184: 'NERR_ServiceNotInstalled',
    2221: 'NERR_UserNotFound',
    2312: 'NERR_ClientNameNotFound',
    2351: 'NERR_InvalidComputer',
    0xC0000022: 'STATUS_ACCESS_DENIED',
    0xC000006D: 'STATUS_LOGON_FAILURE',
    0xC00000BB: 'STATUS_NOT_SUPPORTED',
    0xC00000CC: 'STATUS_BAD_NETWORK_NAME',
}


def status_name(code: int) -> str:
    """
    Translate a remote status code to its symbolic name.

    Args:
        code: NET_API_STATUS, Win32 or NTSTATUS code

    Returns:
        Symbolic name, or the code in hex when it is not in the table
    """
    code = code & 0xFFFFFFFF
    return NET_API_STATUS.get(code, f'0x{code:08X}')


def is_end_of_data(code: int) -> bool:
    return code in END_OF_DATA_CODES


class StatusLog:
    """
    Append-only collection of probe outcomes.

    Safe to write from many probe threads at once.
    """

    def __init__(self):
        self._outcomes: List[ProbeOutcome] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger('StatusLog')

    def __call__(self, outcome: ProbeOutcome):
        self.add(outcome)

    def add(self, outcome: ProbeOutcome):
        with self._lock:
            self._outcomes.append(outcome)
        self.logger.debug(f"{outcome.computer_name} {outcome.task.value}: {outcome.status}")

    @property
    def outcomes(self) -> List[ProbeOutcome]:
        with self._lock:
            return list(self._outcomes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)
