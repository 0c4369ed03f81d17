import logging
import os
import re
import shutil
import subprocess
from datetime import datetime, timedelta
from typing import List, Optional

import psutil

from hostwatch.models import LoginEvent, Session

AUTH_LOG_PATHS = [
    '/var/log/auth.log',
    '/var/log/secure',
    '/var/log/messages'
]

FAILED_LOGIN_MARKERS = ('failed password', 'authentication failure', 'invalid user')

SYSLOG_DATE = re.compile(r'^(\w{3}\s+\d+\s+\d+:\d+:\d+)')
ISO_DATE = re.compile(r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})')
USER_PATTERNS = [
    re.compile(r'invalid user\s+(\S+)', re.IGNORECASE),
    re.compile(r'\buser[=:]\s*(\S+)', re.IGNORECASE),
    re.compile(r'\bfor\s+(\S+)', re.IGNORECASE),
]
HOST_PATTERN = re.compile(r'(?:from|rhost=)\s*([\w.:-]+)', re.IGNORECASE)


class LoginMonitor:
    """Session and login-history collection"""

    def __init__(self, failed_login_window_hours: int = 24):
        self.failed_login_window_hours = failed_login_window_hours
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('HostMonitor')

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_current_sessions(self) -> List[Session]:
        """Logged-in sessions, oldest first"""
        sessions = []
        for user in psutil.users():
            started = datetime.fromtimestamp(user.started) if user.started else None
            sessions.append(Session(
                user=user.name or 'unknown',
                terminal=user.terminal or 'unknown',
                host=user.host or 'local',
                started=started
            ))
        sessions.sort(key=lambda s: s.started or datetime.min)
        return sessions

    def get_current_session_count(self) -> int:
        return len(psutil.users())

    def get_newest_session(self) -> Optional[Session]:
        sessions = self.get_current_sessions()
        return sessions[-1] if sessions else None

    # ------------------------------------------------------------------
    # Login history
    # ------------------------------------------------------------------

    def get_recent_logins(self, count: int = 10) -> List[LoginEvent]:
        """Sessions still logged in according to `last`"""
        if shutil.which('last') is None:
            return []

        proc = subprocess.run(['last', '-n', str(count)], capture_output=True, text=True, timeout=10)
        events = []
        for line in proc.stdout.splitlines():
            if not line or line.startswith(('wtmp', 'reboot')):
                continue
            if 'still logged in' not in line:
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            host = parts[2] if len(parts) > 2 and ('.' in parts[2] or ':' in parts[2]) else 'local'
            events.append(LoginEvent(user=parts[0], terminal=parts[1], host=host,
                                     login_time=datetime.now(), type='login'))
        return events

    def get_failed_logins(self) -> List[LoginEvent]:
        """Failed authentication attempts within the configured window"""
        auth_log = self._read_auth_log()
        cutoff = datetime.now() - timedelta(hours=self.failed_login_window_hours)

        events = []
        for line in auth_log.splitlines():
            lowered = line.lower()
            if not any(marker in lowered for marker in FAILED_LOGIN_MARKERS):
                continue
            event_time = self._parse_log_time(line)
            if event_time is None or event_time < cutoff:
                continue
            user_match = next((m for m in (p.search(line) for p in USER_PATTERNS) if m), None)
            host_match = HOST_PATTERN.search(line)
            events.append(LoginEvent(
                user=user_match.group(1) if user_match else 'unknown',
                terminal='ssh',
                host=host_match.group(1) if host_match else 'unknown',
                login_time=event_time,
                type='failed'
            ))
        return events

    def _read_auth_log(self) -> str:
        for path in AUTH_LOG_PATHS:
            if os.path.exists(path):
                try:
                    with open(path, 'r', encoding='utf-8', errors='replace') as f:
                        return f.read()
                except OSError:
                    continue

        if shutil.which('journalctl') is None:
            return ''
        proc = subprocess.run(
            ['journalctl', '-u', 'sshd', '-u', 'ssh', '--since', f'{self.failed_login_window_hours} hours ago',
             '--no-pager', '-o', 'short-iso'],
            capture_output=True, text=True, timeout=15
        )
        return proc.stdout

    @staticmethod
    def _parse_log_time(line: str) -> Optional[datetime]:
        match = ISO_DATE.match(line)
        if match:
            return datetime.strptime(match.group(1), '%Y-%m-%dT%H:%M:%S')

        match = SYSLOG_DATE.match(line)
        if match:
            # syslog timestamps carry no year
            now = datetime.now()
            parsed = datetime.strptime(f"{now.year} {match.group(1)}", '%Y %b %d %H:%M:%S')
            if parsed > now + timedelta(days=1):
                parsed = parsed.replace(year=now.year - 1)
            return parsed
        return None
