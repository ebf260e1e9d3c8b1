"""
Data model for session collection.

Hosts are built once per enumeration target and only ever have their session set
replaced. Session edges are immutable values so that sets of them deduplicate
structurally.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, List, Optional, Set, TypeVar


T = TypeVar('T')


# ============================================================================
# HOSTS AND SESSIONS
# ============================================================================

@dataclass(frozen=True)
class SessionEdge:
    """
    A user identifier observed with a session on a computer.

    Attributes:
        user_id: User SID, or a NAME@DOMAIN placeholder when resolution failed
        computer_id: Computer SID
    """
    user_id: str
    computer_id: str


@dataclass
class Host:
    """
    A target computer.

    Attributes:
        name: Network-addressable name used for remote calls
        object_identifier: Computer SID
        domain: Domain the computer belongs to (e.g., CONTOSO.LOCAL)
        sam_account_name: Local account namespace (NetBIOS machine name)
        reachable: False when the host failed its reachability check
        sessions: Discovered sessions
    """
    name: str
    object_identifier: str
    domain: str
    sam_account_name: str = ''
    reachable: bool = True
    sessions: Set[SessionEdge] = field(default_factory=set)

    @property
    def local_namespace(self) -> str:
        return self.sam_account_name.rstrip('$')


# ============================================================================
# RAW PROBE RECORDS
# ============================================================================

@dataclass(frozen=True)
class RawActiveSession:
    """NetSessionEnum level 10 entry."""
    client_name: Optional[str]
    username: str


@dataclass(frozen=True)
class RawLoginRecord:
    """NetWkstaUserEnum level 1 entry."""
    username: str
    domain: str


class ProbeResponse(Generic[T]):
    """
    Result of one transport call: a status code, the returned records and an optional
    release callback for whatever remote handle backs them.

    The release callback runs at most once, whether through release() or by leaving a
    ``with`` block.
    """

    def __init__(self, status: int, records: Optional[List[T]] = None,
                 release: Optional[Callable[[], None]] = None):
        self.status = status
        self.records = list(records) if records else []
        self._release = release
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._release is None

    def release(self):
        with self._lock:
            release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> 'ProbeResponse[T]':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


# ============================================================================
# DIAGNOSTIC OUTCOMES
# ============================================================================

class ProbeTask(str, Enum):
    NET_SESSION_ENUM = 'NetSessionEnum'
    NET_WKSTA_USER_ENUM = 'NetWkstaUserEnum'
    REGISTRY_LOGGED_ON = 'RegistryLoggedOn'


class OutcomeKind(str, Enum):
    SUCCESS = 'Success'
    TIMED_OUT = 'TimedOut'
    REMOTE_ERROR = 'RemoteError'
    LOCAL_ERROR = 'LocalError'


@dataclass(frozen=True)
class ProbeStatus:
    """
    Result status of one probe attempt.

    Use the constructors (success, timed_out, remote_error, local_error) rather than
    building instances directly.
    """
    kind: OutcomeKind
    code: Optional[int] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls) -> 'ProbeStatus':
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def timed_out(cls) -> 'ProbeStatus':
        return cls(OutcomeKind.TIMED_OUT)

    @classmethod
    def remote_error(cls, code: int, name: str) -> 'ProbeStatus':
        return cls(OutcomeKind.REMOTE_ERROR, code=code, detail=name)

    @classmethod
    def local_error(cls, message: str) -> 'ProbeStatus':
        return cls(OutcomeKind.LOCAL_ERROR, detail=message)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def __str__(self) -> str:
        if self.kind is OutcomeKind.REMOTE_ERROR:
            return self.detail or f'0x{self.code:08X}'
        if self.kind is OutcomeKind.LOCAL_ERROR:
            return self.detail or 'LocalError'
        return self.kind.value


@dataclass(frozen=True)
class ProbeOutcome:
    """
    Diagnostic record of a single probe attempt against a single host.

    Attributes:
        computer_name: Host the probe ran against
        task: Probe that ran
        status: How it ended
    """
    computer_name: str
    task: ProbeTask
    status: ProbeStatus

    def to_dict(self) -> dict:
        return {
            'ComputerName': self.computer_name,
            'Task': self.task.value,
            'Status': str(self.status),
        }
