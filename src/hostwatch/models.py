from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union


# =============================================================================
# Snapshot
# =============================================================================

@dataclass(frozen=True)
class ProcessInfo:
    name: str
    pid: int
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    username: str = ""
    terminal: str = ""


@dataclass(frozen=True)
class UsbDevice:
    id: str
    name: str
    vendor: str = "unknown"
    type: str = "usb"


@dataclass(frozen=True)
class NetConnection:
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    status: str
    pid: Optional[int] = None
    process_name: str = ""


@dataclass(frozen=True)
class DiskUsage:
    mountpoint: str
    total_gb: float
    used_gb: float
    percent: float


@dataclass(frozen=True)
class Session:
    user: str
    terminal: str
    host: str
    started: Optional[datetime] = None


@dataclass(frozen=True)
class LoginEvent:
    user: str
    terminal: str
    host: str
    login_time: datetime
    type: str = "login"     # login|failed


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time capture of host state.

    Collected fields are None when their collector failed and an empty tuple
    when the collector ran and found nothing.
    """
    taken_at: datetime
    hostname: str = ""
    platform: str = ""
    uptime_seconds: Optional[float] = None
    cpu_percent: Optional[float] = None
    ram_percent: Optional[float] = None
    ram_used_gb: Optional[float] = None
    ram_total_gb: Optional[float] = None
    disk_percent: Optional[float] = None
    disks: Optional[Tuple[DiskUsage, ...]] = None
    processes: Optional[Tuple[ProcessInfo, ...]] = None
    usb_devices: Optional[Tuple[UsbDevice, ...]] = None
    connections: Optional[Tuple[NetConnection, ...]] = None
    sessions: Optional[Tuple[Session, ...]] = None
    recent_logins: Optional[Tuple[LoginEvent, ...]] = None
    failed_logins: Optional[Tuple[LoginEvent, ...]] = None
    active_users: Optional[Tuple[str, ...]] = None


# =============================================================================
# Engine values
# =============================================================================

class ChangeKind(str, Enum):
    NEW_PROCESS = "new_process"
    NEW_USB_DEVICE = "new_usb_device"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    value: Union[str, UsbDevice]

    def describe(self) -> str:
        if self.kind == ChangeKind.NEW_USB_DEVICE:
            return f"New USB device: {self.value.name} ({self.value.id})"
        return f"New process: {self.value}"


class FindingCategory(str, Enum):
    SUSPICIOUS = "suspicious"
    THRESHOLD_BREACH = "threshold_breach"


@dataclass(frozen=True)
class Finding:
    category: FindingCategory
    message: str


class AlertType(str, Enum):
    LOGIN = "login"
    SUSPICIOUS = "suspicious"
    THRESHOLD = "threshold"
    NEW_ACTIVITY = "new_activity"
    SCHEDULED_REPORT = "scheduled_report"
    TEST = "test"


@dataclass(frozen=True)
class AlertMessage:
    type: AlertType
    body: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Thresholds:
    cpu: float = 90.0
    ram: float = 90.0
    disk: float = 90.0
    failed_login_attempts: int = 3      # reserved, not evaluated


@dataclass(frozen=True)
class SendResult:
    success: bool
    transient: bool = False
    error: str = ""


@dataclass(frozen=True)
class DispatchResult:
    channel: str
    success: bool
    attempts: int
