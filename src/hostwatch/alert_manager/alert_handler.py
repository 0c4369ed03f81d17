import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Dict, Any, List, Sequence

from hostwatch.alert_manager.report_generator import format_timestamp, generate_alert_message
from hostwatch.models import (
    AlertMessage, AlertType, ChangeEvent, DispatchResult, Finding, FindingCategory, LoginEvent
)
from hostwatch.notification.router import NotificationRouter
from hostwatch.utils.config_loader import MonitoringSettings


class AlertDispatcher:
    """Compose per-cycle alert messages and hand them to the router.

    Each category yields at most one message per cycle; all findings of the
    category are joined into its body.
    """

    def __init__(self, router: NotificationRouter, settings: MonitoringSettings = None,
                 history_size: int = 500):
        self.router = router
        self.settings = settings or MonitoringSettings()

        # Alert history and statistics (in memory only)
        self.alert_history = deque(maxlen=history_size)
        self.alert_stats = defaultdict(int)
        self.suppressed_alerts = defaultdict(int)

        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('AlertManager')

    def dispatch(self, events: Sequence[ChangeEvent], findings: Sequence[Finding]) -> List[AlertMessage]:
        """Map one cycle's events and findings to alert messages"""
        now = datetime.now()
        messages = []

        if events:
            details = "\n".join(f"• {event.describe()}" for event in events)
            messages.append(self._compose(AlertType.NEW_ACTIVITY, details, now))

        suspicious = [f.message for f in findings if f.category == FindingCategory.SUSPICIOUS]
        if suspicious:
            messages.append(self._compose(AlertType.SUSPICIOUS, "\n".join(suspicious), now))

        breaches = [f.message for f in findings if f.category == FindingCategory.THRESHOLD_BREACH]
        if breaches:
            messages.append(self._compose(AlertType.THRESHOLD, "\n".join(breaches), now))

        return messages

    def login_message(self, event: LoginEvent) -> AlertMessage:
        details = (f"User: {event.user}\n"
                   f"Terminal: {event.terminal}\n"
                   f"From: {event.host}\n"
                   f"Time: {format_timestamp(event.login_time)}")
        return self._compose(AlertType.LOGIN, details, datetime.now())

    def report_message(self, report_text: str) -> AlertMessage:
        return AlertMessage(AlertType.SCHEDULED_REPORT, report_text, datetime.now())

    def test_message(self) -> AlertMessage:
        details = "Test notification from Host Watch\n\nIf you received this, notifications are working!"
        return self._compose(AlertType.TEST, details, datetime.now())

    def _compose(self, alert_type: AlertType, details: str, timestamp: datetime) -> AlertMessage:
        return AlertMessage(alert_type, generate_alert_message(alert_type, details, timestamp), timestamp)

    def should_route(self, message: AlertMessage) -> bool:
        """Apply the report-on toggles"""
        if message.type == AlertType.LOGIN:
            return self.settings.report_on_login
        if message.type == AlertType.SUSPICIOUS:
            return self.settings.report_on_suspicious_activity
        if message.type == AlertType.NEW_ACTIVITY:
            return self.settings.report_on_new_activity
        return True

    async def deliver(self, messages: Sequence[AlertMessage]) -> List[DispatchResult]:
        """Route messages in order; delivery failures come back as results"""
        results = []
        for message in messages:
            if not self.should_route(message):
                self.suppressed_alerts[message.type.value] += 1
                self.logger.debug(f"Alert not routed (disabled): {message.type.value}")
                continue

            message_results = await self.router.send(message)
            self._record(message, message_results)
            results.extend(message_results)
        return results

    def _record(self, message: AlertMessage, results: List[DispatchResult]):
        self.alert_history.append({
            'timestamp': message.timestamp.isoformat(),
            'type': message.type.value,
            'body': message.body,
            'results': [
                {'channel': r.channel, 'success': r.success, 'attempts': r.attempts}
                for r in results
            ]
        })
        self.alert_stats[message.type.value] += 1
        failed = [r.channel for r in results if not r.success]
        if failed:
            self.alert_stats['delivery_failures'] += len(failed)
            self.logger.warning(f"{message.type.value} alert not delivered to: {', '.join(failed)}")
        else:
            self.logger.info(f"Alert routed: {message.type.value} ({len(results)} channel(s))")

    def get_alerts(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent routed alerts, newest first"""
        alerts = list(self.alert_history)[-limit:] if limit > 0 else []
        return list(reversed(alerts))

    def get_alert_statistics(self) -> Dict[str, Any]:
        return {
            'alert_counts': dict(self.alert_stats),
            'suppressed_alerts': dict(self.suppressed_alerts),
            'history_size': len(self.alert_history)
        }
