import asyncio
import logging
import platform
import re
import shutil
import socket
import subprocess
import time
from datetime import datetime
from typing import Dict, Any, Callable, List, Optional, Tuple

import psutil

from hostwatch.host_monitor.login_monitor import LoginMonitor
from hostwatch.models import DiskUsage, NetConnection, ProcessInfo, Snapshot, UsbDevice

LSUSB_LINE = re.compile(r'Bus\s+\d+\s+Device\s+\d+:\s+ID\s+([\w:]+)\s+(.+)')

# Pseudo/virtual filesystems that say nothing about disk pressure
IGNORED_FSTYPES = {'squashfs', 'tmpfs', 'devtmpfs', 'overlay', 'iso9660'}


def _gb(value: float) -> float:
    return round(value / (1024 ** 3), 2)


class HostSnapshotProvider:
    """Collect a Snapshot of host state.

    Every sub-collector runs in a worker thread and is isolated: when one
    raises, its Snapshot field is None and the others are still returned.
    """

    def __init__(self, config: Dict[str, Any] = None, login_monitor: LoginMonitor = None):
        self.config = config or {}
        self.login_monitor = login_monitor or LoginMonitor(
            failed_login_window_hours=self.config.get('failed_login_window_hours', 24)
        )
        self.logger = self._setup_logger()

        # warmup for per-process cpu%
        for proc in psutil.process_iter():
            try:
                proc.cpu_percent(None)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue

    def _setup_logger(self):
        return logging.getLogger('HostMonitor')

    async def get_snapshot(self) -> Snapshot:
        collectors: List[Tuple[str, Callable]] = [
            ('host', self.collect_host_info),
            ('uptime', self.collect_uptime),
            ('cpu', self.collect_cpu),
            ('memory', self.collect_memory),
            ('disks', self.collect_disks),
            ('processes', self.collect_processes),
            ('usb_devices', self.collect_usb_devices),
            ('connections', self.collect_connections),
            ('sessions', self.login_monitor.get_current_sessions),
            ('recent_logins', self.login_monitor.get_recent_logins),
            ('failed_logins', self.login_monitor.get_failed_logins),
        ]

        outcomes = await asyncio.gather(
            *[asyncio.to_thread(fn) for _, fn in collectors],
            return_exceptions=True
        )

        data: Dict[str, Any] = {}
        for (name, _), outcome in zip(collectors, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                self.logger.warning(f"Collector '{name}' unavailable: {outcome}")
                data[name] = None
            else:
                data[name] = outcome

        host = data['host'] or {}
        memory = data['memory'] or {}
        disks = data['disks'] or {}
        sessions = data['sessions']

        return Snapshot(
            taken_at=datetime.now(),
            hostname=host.get('hostname', ''),
            platform=host.get('platform', ''),
            uptime_seconds=data['uptime'],
            cpu_percent=data['cpu'],
            ram_percent=memory.get('percent'),
            ram_used_gb=memory.get('used_gb'),
            ram_total_gb=memory.get('total_gb'),
            disk_percent=disks.get('percent'),
            disks=self._as_tuple(disks.get('disks')),
            processes=self._as_tuple(data['processes']),
            usb_devices=self._as_tuple(data['usb_devices']),
            connections=self._as_tuple(data['connections']),
            sessions=self._as_tuple(sessions),
            recent_logins=self._as_tuple(data['recent_logins']),
            failed_logins=self._as_tuple(data['failed_logins']),
            active_users=tuple(dict.fromkeys(s.user for s in sessions)) if sessions is not None else None
        )

    @staticmethod
    def _as_tuple(value) -> Optional[tuple]:
        return tuple(value) if value is not None else None

    @staticmethod
    def _aggregate_disk_percent(total_bytes: int, used_bytes: int) -> Optional[float]:
        if total_bytes <= 0:
            return None
        return round(used_bytes / total_bytes * 100, 2)

    # =========================================================================
    # Collectors (blocking, run in worker threads)
    # =========================================================================

    def collect_host_info(self) -> Dict[str, str]:
        return {
            'hostname': socket.gethostname(),
            'platform': f"{platform.system()} {platform.release()}"
        }

    def collect_uptime(self) -> float:
        return time.time() - psutil.boot_time()

    def collect_cpu(self) -> float:
        return round(psutil.cpu_percent(interval=1), 2)

    def collect_memory(self) -> Dict[str, float]:
        memory = psutil.virtual_memory()
        return {
            'percent': round(memory.percent, 2),
            'used_gb': _gb(memory.used),
            'total_gb': _gb(memory.total)
        }

    def collect_disks(self) -> Dict[str, Any]:
        """Per-mount usage plus the overall percentage, summed in bytes"""
        disks = []
        seen = set()
        total_bytes = 0
        used_bytes = 0
        for partition in psutil.disk_partitions():
            if partition.fstype in IGNORED_FSTYPES or partition.device in seen:
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError):
                continue
            seen.add(partition.device)
            total_bytes += usage.total
            used_bytes += usage.used
            disks.append(DiskUsage(
                mountpoint=partition.mountpoint,
                total_gb=_gb(usage.total),
                used_gb=_gb(usage.used),
                percent=round(usage.percent, 2)
            ))
        return {'disks': disks, 'percent': self._aggregate_disk_percent(total_bytes, used_bytes)}

    def collect_processes(self) -> List[ProcessInfo]:
        cpu_count = psutil.cpu_count(logical=True) or 1
        processes = []
        for proc in psutil.process_iter(['pid', 'name', 'username', 'memory_percent', 'terminal']):
            try:
                info = proc.info
                if not info.get('name'):
                    continue
                processes.append(ProcessInfo(
                    name=info['name'],
                    pid=int(info['pid']),
                    cpu_percent=round(proc.cpu_percent(interval=None) / cpu_count, 2),
                    memory_percent=round(info.get('memory_percent') or 0.0, 2),
                    username=info.get('username') or '',
                    terminal=info.get('terminal') or ''
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return processes

    def collect_connections(self) -> List[NetConnection]:
        connections = []
        names: Dict[int, str] = {}
        for conn in psutil.net_connections(kind='inet'):
            if not conn.laddr:
                continue
            process_name = ''
            if conn.pid:
                if conn.pid not in names:
                    try:
                        names[conn.pid] = psutil.Process(conn.pid).name()
                    except (psutil.NoSuchProcess, psutil.AccessDenied):
                        names[conn.pid] = ''
                process_name = names[conn.pid]
            connections.append(NetConnection(
                local_address=conn.laddr.ip,
                local_port=conn.laddr.port,
                remote_address=conn.raddr.ip if conn.raddr else '',
                remote_port=conn.raddr.port if conn.raddr else 0,
                status=conn.status,
                pid=conn.pid,
                process_name=process_name
            ))
        return connections

    def collect_usb_devices(self) -> List[UsbDevice]:
        if shutil.which('lsusb') is None:
            raise RuntimeError("lsusb not available")

        proc = subprocess.run(['lsusb'], capture_output=True, text=True, timeout=10)
        if proc.returncode != 0:
            raise RuntimeError(f"lsusb exited with {proc.returncode}")

        devices = []
        for line in proc.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            match = LSUSB_LINE.match(line)
            if match:
                name = match.group(2).strip()
                devices.append(UsbDevice(id=match.group(1), name=name, vendor=name.split(' ')[0]))
            else:
                devices.append(UsbDevice(id=line, name=line))
        return devices
