import logging
import re
from typing import Callable, List, Optional

from hostwatch.models import Finding, FindingCategory, Snapshot

# Miner signatures and the indexing helpers that merely share the word
MINER_SIGNATURES = ('miner', 'xmr', 'monero', 'ethminer', 'cgminer', 'bfgminer', 'nicehash')
SAFE_MINER_ALLOWLIST = ('tracker-miner-fs', 'tracker-miner', 'searchindexer')

PRIVILEGED_USERS = {'root', 'system', 'nt authority\\system'}
SHELL_NAMES = {'bash', 'sh', 'zsh', 'dash', 'ksh', 'fish', 'tcsh', 'csh'}
REVERSE_SHELL_PATTERN = re.compile(r'^((ba|z|da|k|tc|c)?sh|nc|ncat|netcat|socat)(\.exe)?$', re.IGNORECASE)

SSH_PORT = 22
RDP_PORT = 3389


class SuspiciousActivityEvaluator:
    """Heuristic checks for signs of intrusion in a snapshot.

    Checks are independent: each one that cannot run (missing data, bad
    record) contributes nothing and the remaining checks still run.
    """

    def __init__(self):
        self.logger = self._setup_logger()
        self.checks: List[Callable[[Snapshot], Optional[str]]] = [
            self._check_privileged_pty_shells,
            self._check_ssh_sessions,
            self._check_rdp_sessions,
            self._check_miner_processes,
            self._check_reverse_shells,
        ]

    def _setup_logger(self):
        return logging.getLogger('DetectionEngine')

    def evaluate(self, snapshot: Snapshot) -> List[Finding]:
        """Run every check against the snapshot"""
        findings = []
        for check in self.checks:
            try:
                message = check(snapshot)
            except Exception as e:
                self.logger.debug(f"Check {check.__name__} skipped: {e}")
                continue
            if message:
                findings.append(Finding(FindingCategory.SUSPICIOUS, message))
        return findings

    def _check_privileged_pty_shells(self, snapshot: Snapshot) -> Optional[str]:
        if snapshot.processes is None:
            return None
        shells = [
            f"{p.name} (PID: {p.pid}, {p.terminal})"
            for p in snapshot.processes
            if (p.username or '').lower() in PRIVILEGED_USERS
            and 'pts' in (p.terminal or '')
            and p.name.lower() in SHELL_NAMES
        ]
        if shells:
            return f"Root shell running on pseudo-terminal: {', '.join(shells)}"
        return None

    def _count_inbound(self, snapshot: Snapshot, port: int) -> int:
        if snapshot.connections is None:
            return 0
        return sum(
            1 for c in snapshot.connections
            if c.status == 'ESTABLISHED' and c.local_port == port
        )

    def _check_ssh_sessions(self, snapshot: Snapshot) -> Optional[str]:
        count = self._count_inbound(snapshot, SSH_PORT)
        if count > 0:
            return f"{count} active SSH connections detected"
        return None

    def _check_rdp_sessions(self, snapshot: Snapshot) -> Optional[str]:
        count = self._count_inbound(snapshot, RDP_PORT)
        if count > 0:
            return f"{count} active RDP connections detected"
        return None

    def _check_miner_processes(self, snapshot: Snapshot) -> Optional[str]:
        if snapshot.processes is None:
            return None
        miners = []
        for proc in snapshot.processes:
            if is_miner_name(proc.name) and proc.name not in miners:
                miners.append(proc.name)
        if miners:
            return f"Potential crypto miner processes: {', '.join(miners)}"
        return None

    def _check_reverse_shells(self, snapshot: Snapshot) -> Optional[str]:
        if snapshot.connections is None:
            return None
        suspects = []
        for conn in snapshot.connections:
            if conn.status != 'ESTABLISHED' or not conn.process_name:
                continue
            if REVERSE_SHELL_PATTERN.match(conn.process_name):
                suspects.append(f"{conn.process_name} -> {conn.remote_address}:{conn.remote_port}")
        if suspects:
            return f"Potential reverse shell connections detected: {', '.join(suspects)}"
        return None


def is_miner_name(name: str) -> bool:
    """Match a process name against the miner signatures, minus the allowlist"""
    lowered = name.lower()
    if any(safe in lowered for safe in SAFE_MINER_ALLOWLIST):
        return False
    # bare "miner" also appears in desktop indexers such as tracker-extract-miner
    if 'miner' in lowered and 'tracker' not in lowered:
        return True
    return any(signature in lowered for signature in MINER_SIGNATURES if signature != 'miner')
