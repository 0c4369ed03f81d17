from datetime import datetime
from typing import List, Optional, Sequence

from hostwatch.models import AlertType, ChangeEvent, Finding, Snapshot

HEAVY_RULE = "═══════════════════════════════════════"
LIGHT_RULE = "───────────────────────────────────────"

ALERT_HEADERS = {
    AlertType.LOGIN: ("🔐", "New Login Detected"),
    AlertType.SUSPICIOUS: ("🚨", "Suspicious Activity"),
    AlertType.THRESHOLD: ("⚠️", "Resource Alert"),
    AlertType.NEW_ACTIVITY: ("🆕", "New Activity"),
    AlertType.TEST: ("🧪", "Test Notification"),
}


def format_timestamp(value: datetime) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S')


def format_uptime(seconds: Optional[float]) -> str:
    if seconds is None:
        return "unknown"
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    return " ".join(parts) or "< 1m"


def progress_bar(percent: Optional[float], width: int = 20) -> str:
    percent = min(max(percent or 0.0, 0.0), 100.0)
    filled = round(percent / 100 * width)
    return "█" * filled + "░" * (width - filled)


def _section(lines: List[str], title: str):
    lines.append(LIGHT_RULE)
    lines.append(f"   {title}")
    lines.append(LIGHT_RULE)
    lines.append("")


def generate_alert_message(alert_type: AlertType, details: str, timestamp: datetime) -> str:
    """Frame alert details with the icon and title of their type"""
    icon, title = ALERT_HEADERS[alert_type]
    return f"{icon} *{title}*\n\n{details}\n\n_{format_timestamp(timestamp)}_"


def generate_text_report(snapshot: Snapshot, suspicious: Sequence[Finding] = (),
                         changes: Sequence[ChangeEvent] = (), top_processes: int = 5) -> str:
    """Full scheduled report; sections without data are left out"""
    lines = [
        HEAVY_RULE,
        "       🖥️ SYSTEM MONITOR REPORT",
        HEAVY_RULE,
        "",
        f"📅 {format_timestamp(snapshot.taken_at)}",
        f"🏠 {snapshot.hostname} ({snapshot.platform})",
        f"⏱️ Uptime: {format_uptime(snapshot.uptime_seconds)}",
        "",
    ]

    _section(lines, "📊 SYSTEM STATS")
    if snapshot.cpu_percent is not None:
        lines.append(f"💻 CPU:  {progress_bar(snapshot.cpu_percent)} {snapshot.cpu_percent:.1f}%")
    if snapshot.ram_percent is not None:
        lines.append(f"🧠 RAM:  {progress_bar(snapshot.ram_percent)} {snapshot.ram_percent:.1f}%")
        if snapshot.ram_used_gb is not None and snapshot.ram_total_gb is not None:
            lines.append(f"   {snapshot.ram_used_gb}GB / {snapshot.ram_total_gb}GB")
    if snapshot.disk_percent is not None:
        lines.append(f"💾 Disk: {progress_bar(snapshot.disk_percent)} {snapshot.disk_percent:.1f}%")
    for disk in snapshot.disks or ():
        lines.append(f"   {disk.mountpoint}: {disk.used_gb}GB / {disk.total_gb}GB ({disk.percent:.1f}%)")
    lines.append("")

    if snapshot.sessions is not None:
        _section(lines, "👥 ACTIVE SESSIONS")
        if not snapshot.sessions:
            lines.append("No active sessions")
        for session in snapshot.sessions:
            started = format_timestamp(session.started) if session.started else "unknown"
            lines.append(f"• {session.user} @ {session.terminal}")
            lines.append(f"  From: {session.host} | Since: {started}")
        lines.append("")

    if snapshot.failed_logins:
        _section(lines, "⚠️ FAILED LOGIN ATTEMPTS")
        lines.append(f"🚨 {len(snapshot.failed_logins)} failed attempts recently")
        for login in snapshot.failed_logins[:5]:
            lines.append(f"• User: {login.user} from {login.host}")
        lines.append("")

    if suspicious:
        _section(lines, "🚨 SUSPICIOUS ACTIVITY")
        for finding in suspicious:
            lines.append(f"⚠️ {finding.message}")
        lines.append("")

    if changes:
        _section(lines, "🆕 NEW ACTIVITY")
        for change in changes:
            lines.append(f"• {change.describe()}")
        lines.append("")

    if snapshot.processes:
        _section(lines, "🔝 TOP PROCESSES (CPU)")
        ranked = sorted(snapshot.processes, key=lambda p: p.cpu_percent, reverse=True)
        for proc in ranked[:top_processes]:
            lines.append(f"• {proc.name} (PID: {proc.pid})")
            lines.append(f"  CPU: {proc.cpu_percent:.1f}% | RAM: {proc.memory_percent:.1f}%")
        lines.append("")

    if snapshot.connections is not None:
        established = [c for c in snapshot.connections if c.status == 'ESTABLISHED']
        _section(lines, "🌐 NETWORK CONNECTIONS")
        lines.append(f"Active connections: {len(established)}")
        for conn in established[:5]:
            lines.append(f"• {conn.remote_address}:{conn.remote_port} ({conn.process_name or 'unknown'})")
        lines.append("")

    if snapshot.usb_devices:
        _section(lines, "🔌 USB DEVICES")
        for device in snapshot.usb_devices:
            lines.append(f"• {device.name}")
        lines.append("")

    lines.append(HEAVY_RULE)
    lines.append("           END OF REPORT")
    lines.append(HEAVY_RULE)

    return "\n".join(lines)


def generate_quick_report(snapshot: Snapshot, suspicious: Sequence[Finding] = ()) -> str:
    lines = ["🖥️ *Quick System Status*", ""]
    for label, value in (("CPU", snapshot.cpu_percent), ("RAM", snapshot.ram_percent),
                         ("Disk", snapshot.disk_percent)):
        if value is not None:
            lines.append(f"{label}: {progress_bar(value, 10)} {value:.1f}%")
    if snapshot.sessions is not None:
        lines.append(f"Sessions: {len(snapshot.sessions)}")

    if suspicious:
        lines.append("")
        lines.append("⚠️ *Alerts:*")
        for finding in suspicious:
            lines.append(f"• {finding.message}")

    lines.append("")
    lines.append(f"_{format_timestamp(snapshot.taken_at)}_")
    return "\n".join(lines)
