import logging
from dataclasses import dataclass, field
from typing import List, Set

from hostwatch.models import ChangeEvent, ChangeKind, Snapshot


@dataclass
class Baseline:
    """Rolling record of the most recently observed processes and USB devices"""
    known_process_names: Set[str] = field(default_factory=set)
    known_usb_ids: Set[str] = field(default_factory=set)


class BaselineTracker:
    """Turns successive snapshots into new-process / new-USB-device events.

    The tracker is the only writer of its Baseline. Each update replaces the
    known sets with the snapshot's sets, so the baseline is always the last
    observed state rather than a history. A snapshot field that is None
    (collector failed) is treated as "no information": no events, and the
    corresponding known set is kept as it was.
    """

    def __init__(self, baseline: Baseline = None):
        self.baseline = baseline if baseline is not None else Baseline()
        self.initialized = False
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('BaselineEngine')

    def initialize(self, snapshot: Snapshot):
        """Establish the baseline from a snapshot without emitting events"""
        if snapshot.processes is not None:
            self.baseline.known_process_names = {p.name for p in snapshot.processes}
        if snapshot.usb_devices is not None:
            self.baseline.known_usb_ids = {d.id for d in snapshot.usb_devices}
        self.initialized = True

        self.logger.info(f"Baseline established: {len(self.baseline.known_process_names)} processes, "
                         f"{len(self.baseline.known_usb_ids)} USB devices")

    def update(self, snapshot: Snapshot) -> List[ChangeEvent]:
        """Diff a snapshot against the baseline, then roll the baseline forward"""
        events: List[ChangeEvent] = []

        if snapshot.processes is None:
            self.logger.warning("Process data unavailable, keeping previous process baseline")
        else:
            current_processes = set()
            for proc in snapshot.processes:
                if proc.name not in self.baseline.known_process_names and proc.name not in current_processes:
                    events.append(ChangeEvent(ChangeKind.NEW_PROCESS, proc.name))
                current_processes.add(proc.name)
            self.baseline.known_process_names = current_processes

        if snapshot.usb_devices is None:
            self.logger.warning("USB data unavailable, keeping previous USB baseline")
        else:
            current_usb = set()
            for device in snapshot.usb_devices:
                if device.id not in self.baseline.known_usb_ids and device.id not in current_usb:
                    events.append(ChangeEvent(ChangeKind.NEW_USB_DEVICE, device))
                current_usb.add(device.id)
            self.baseline.known_usb_ids = current_usb

        if events:
            self.logger.info(f"Detected {len(events)} baseline changes")

        return events
