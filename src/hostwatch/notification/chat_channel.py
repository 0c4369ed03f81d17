import asyncio
import logging
from typing import Dict, Any

import requests

from hostwatch.models import SendResult
from hostwatch.notification.channels import NotificationChannel

TRANSIENT_STATUS_CODES = {408, 425, 429}


class ChatChannel(NotificationChannel):
    """Chat-style channel over a Bot-API compatible HTTP endpoint"""

    name = "chat"
    default_max_length = 4000

    def __init__(self, config: Dict[str, Any], session: requests.Session = None):
        super().__init__(config)
        self.api_url = str(self.config.get('api_url', 'https://api.telegram.org')).rstrip('/')
        self.bot_token = self.config.get('bot_token', '')
        self.chat_id = self.config.get('chat_id', '')
        self.timeout = self.config.get('timeout', 30)
        self.session = session or requests.Session()
        self.ready = False
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('NotificationRouter')

    def is_enabled(self) -> bool:
        return super().is_enabled() and bool(self.bot_token) and bool(self.chat_id)

    def _endpoint(self, method: str) -> str:
        return f"{self.api_url}/bot{self.bot_token}/{method}"

    async def start(self):
        await self._ensure_session()

    async def close(self):
        self.session.close()
        self.ready = False

    async def send_chunk(self, text: str) -> SendResult:
        session_result = await self._ensure_session()
        if not session_result.success:
            return session_result
        return await asyncio.to_thread(self._post_message, text)

    async def _ensure_session(self) -> SendResult:
        """Verify the bot credentials once, and again after an auth failure"""
        if self.ready:
            return SendResult(True)
        result = await asyncio.to_thread(self._verify)
        self.ready = result.success
        if result.success:
            self.logger.info("Chat session verified")
        else:
            self.logger.warning(f"Chat session not ready: {result.error}")
        return result

    def _verify(self) -> SendResult:
        try:
            response = self.session.get(self._endpoint('getMe'), timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            return SendResult(False, transient=True, error=str(e))
        except requests.RequestException as e:
            return SendResult(False, transient=False, error=str(e))
        return self._classify(response)

    def _post_message(self, text: str) -> SendResult:
        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'disable_web_page_preview': True
        }
        try:
            response = self.session.post(self._endpoint('sendMessage'), json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            return SendResult(False, transient=True, error=str(e))
        except requests.RequestException as e:
            return SendResult(False, transient=False, error=str(e))

        result = self._classify(response)
        if response.status_code in (401, 403):
            # token revoked or bot removed from chat; verify again next time
            self.ready = False
        return result

    @staticmethod
    def _classify(response) -> SendResult:
        status = response.status_code
        if 200 <= status < 300:
            return SendResult(True)
        error = f"HTTP {status}"
        try:
            description = response.json().get('description')
            if description:
                error = f"{error}: {description}"
        except ValueError:
            pass
        transient = status >= 500 or status in TRANSIENT_STATUS_CODES
        return SendResult(False, transient=transient, error=error)
