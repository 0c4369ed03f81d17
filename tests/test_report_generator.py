from datetime import datetime

from hostwatch.alert_manager.report_generator import (
    format_uptime, generate_quick_report, generate_text_report, progress_bar
)
from hostwatch.models import (
    ChangeEvent, ChangeKind, DiskUsage, Finding, FindingCategory, LoginEvent, ProcessInfo
)


def test_format_uptime():
    assert format_uptime(3 * 86400 + 4 * 3600 + 5 * 60) == "3d 4h 5m"
    assert format_uptime(30) == "< 1m"
    assert format_uptime(None) == "unknown"


def test_progress_bar_is_clamped():
    assert progress_bar(50, 10) == "█████░░░░░"
    assert progress_bar(150, 4) == "████"
    assert progress_bar(None, 4) == "░░░░"


def test_full_report_sections(make_snapshot, session_record):
    snapshot = make_snapshot(
        processes=[ProcessInfo("chrome", 10, cpu_percent=12.5, memory_percent=8.0),
                   ProcessInfo("xmrig", 11, cpu_percent=88.0, memory_percent=1.5)],
        sessions=[session_record()],
        cpu_percent=42.0, ram_percent=61.3, ram_used_gb=9.8, ram_total_gb=16.0, disk_percent=70.0,
        disks=(DiskUsage("/", 100.0, 70.0, 70.0),),
        failed_logins=(LoginEvent("root", "ssh", "203.0.113.9", datetime(2024, 5, 1, 10, 0), type="failed"),),
    )
    report = generate_text_report(
        snapshot,
        suspicious=[Finding(FindingCategory.SUSPICIOUS, "Potential crypto miner processes: xmrig")],
        changes=[ChangeEvent(ChangeKind.NEW_PROCESS, "xmrig")],
        top_processes=1
    )

    assert "🏠 testhost (Linux 6.1)" in report
    assert "⏱️ Uptime: 3d 4h 5m" in report
    assert "💻 CPU:" in report and "42.0%" in report
    assert "9.8GB / 16.0GB" in report
    assert "• alice @ pts/0" in report
    assert "🚨 1 failed attempts recently" in report
    assert "⚠️ Potential crypto miner processes: xmrig" in report
    assert "• New process: xmrig" in report
    # top process by cpu only
    assert "• xmrig (PID: 11)" in report and "• chrome (PID: 10)" not in report
    assert report.rstrip().endswith("═")


def test_sections_without_data_are_omitted(make_snapshot):
    snapshot = make_snapshot(processes=None, usb_devices=None, connections=None, sessions=None)
    report = generate_text_report(snapshot)

    assert "ACTIVE SESSIONS" not in report
    assert "TOP PROCESSES" not in report
    assert "NETWORK CONNECTIONS" not in report
    assert "USB DEVICES" not in report
    assert "SUSPICIOUS ACTIVITY" not in report
    assert "CPU:" not in report
    assert "END OF REPORT" in report


def test_quick_report(make_snapshot):
    snapshot = make_snapshot(cpu_percent=12.0, ram_percent=40.0, disk_percent=None, sessions=())
    text = generate_quick_report(snapshot, [Finding(FindingCategory.SUSPICIOUS, "1 active SSH connections detected")])

    assert text.startswith("🖥️ *Quick System Status*")
    assert "CPU: " in text and "Disk:" not in text
    assert "Sessions: 0" in text
    assert "• 1 active SSH connections detected" in text
