import asyncio
import logging
import smtplib
import socket
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from typing import Dict, Any, List

from hostwatch.models import SendResult
from hostwatch.notification.channels import NotificationChannel


class EmailChannel(NotificationChannel):
    """Store-and-relay mail channel over SMTP"""

    name = "email"
    default_max_length = 100000

    def __init__(self, config: Dict[str, Any], smtp_factory=None):
        super().__init__(config)
        self.smtp_server = self.config.get('smtp_server', 'smtp.gmail.com')
        self.smtp_port = int(self.config.get('smtp_port', 587))
        self.use_ssl = bool(self.config.get('use_ssl', False))
        self.use_starttls = bool(self.config.get('use_starttls', True))
        self.username = self.config.get('username', '')
        self.password = self.config.get('password', '')
        self.sender = self.config.get('sender') or self.username
        self.timeout = self.config.get('timeout', 30)
        self._smtp_factory = smtp_factory
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('NotificationRouter')

    @property
    def recipients(self) -> List[str]:
        recipients = self.config.get('recipients') or []
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(',')]
        return [r for r in recipients if r]

    def is_enabled(self) -> bool:
        return super().is_enabled() and bool(self.recipients) and bool(self.username)

    async def send_chunk(self, text: str) -> SendResult:
        return await asyncio.to_thread(self._send, text)

    def build_subject(self, text: str) -> str:
        """Subject from the first meaningful line of the message"""
        first_line = ''
        for line in text.split('\n'):
            candidate = line.strip().strip('*_═─ ')
            if candidate and not (candidate.startswith('(') and candidate.endswith(')')):
                first_line = candidate
                break
        hostname = socket.gethostname()
        return f"Host Watch [{hostname}]: {first_line or 'Notification'}"[:200]

    def _connect(self):
        if self._smtp_factory:
            return self._smtp_factory(self.smtp_server, self.smtp_port, self.timeout)
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.smtp_server, self.smtp_port, timeout=self.timeout)
        return smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout)

    def _send(self, text: str) -> SendResult:
        msg = MIMEMultipart()
        msg['From'] = self.sender
        msg['To'] = ', '.join(self.recipients)
        msg['Subject'] = self.build_subject(text)
        msg['Date'] = formatdate(localtime=True)
        msg.attach(MIMEText(text, 'plain', 'utf-8'))

        try:
            smtp_server = self._connect()
            try:
                if self.use_starttls and not self.use_ssl:
                    smtp_server.starttls()
                if self.password:
                    smtp_server.login(self.username, self.password)
                smtp_server.send_message(msg)
            finally:
                try:
                    smtp_server.quit()
                except (smtplib.SMTPException, OSError):
                    pass
        except smtplib.SMTPAuthenticationError as e:
            return SendResult(False, transient=False, error=f"authentication failed: {e.smtp_code}")
        except smtplib.SMTPRecipientsRefused as e:
            codes = [code for code, _ in e.recipients.values()]
            transient = bool(codes) and all(400 <= code < 500 for code in codes)
            return SendResult(False, transient=transient, error=f"recipients refused: {codes}")
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError) as e:
            return SendResult(False, transient=True, error=str(e))
        except smtplib.SMTPResponseException as e:
            return SendResult(False, transient=400 <= e.smtp_code < 500, error=f"SMTP {e.smtp_code}: {e.smtp_error!r}")
        except smtplib.SMTPException as e:
            return SendResult(False, transient=False, error=str(e))
        except OSError as e:
            return SendResult(False, transient=True, error=str(e))

        self.logger.info(f"Email sent to {len(self.recipients)} recipient(s)")
        return SendResult(True)
