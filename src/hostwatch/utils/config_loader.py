import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any

import yaml

from hostwatch.models import Thresholds


@dataclass(frozen=True)
class MonitoringSettings:
    report_interval_seconds: float = 3600
    login_watch_interval_seconds: float = 10
    report_on_login: bool = True
    report_on_suspicious_activity: bool = True
    report_on_new_activity: bool = True
    shutdown_grace_seconds: float = 10


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """Configuration loader and manager"""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = {}
        self.load_config()

    def load_config(self):
        """Load configuration from file"""
        defaults = self.get_default_config()
        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded = yaml.safe_load(f) or {}
                if not isinstance(loaded, dict):
                    raise ValueError("top level of the config file must be a mapping")
                self.config = _deep_merge(defaults, loaded)
            else:
                print(f"Warning: Config file not found: {self.config_path}")
                self.config = defaults
        except (OSError, yaml.YAMLError, ValueError) as e:
            print(f"Error loading config: {e}")
            self.config = defaults

    def get(self, key: str, default=None):
        """Get configuration value using dot notation"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def thresholds(self) -> Thresholds:
        """Alert thresholds from the 'alerts' section"""
        return Thresholds(
            cpu=float(self.get('alerts.cpu_threshold', 90)),
            ram=float(self.get('alerts.ram_threshold', 90)),
            disk=float(self.get('alerts.disk_threshold', 90)),
            failed_login_attempts=int(self.get('alerts.failed_login_attempts', 3))
        )

    def monitoring(self) -> MonitoringSettings:
        """Scheduler settings from the 'monitoring' section"""
        return MonitoringSettings(
            report_interval_seconds=float(self.get('monitoring.report_interval_seconds', 3600)),
            login_watch_interval_seconds=float(self.get('monitoring.login_watch_interval_seconds', 10)),
            report_on_login=bool(self.get('monitoring.report_on_login', True)),
            report_on_suspicious_activity=bool(self.get('monitoring.report_on_suspicious_activity', True)),
            report_on_new_activity=bool(self.get('monitoring.report_on_new_activity', True)),
            shutdown_grace_seconds=float(self.get('monitoring.shutdown_grace_seconds', 10))
        )

    def channel_config(self, name: str) -> Dict[str, Any]:
        return dict(self.get(f'notifications.{name}', {}) or {})

    @staticmethod
    def get_default_config() -> Dict[str, Any]:
        """Get default configuration"""
        return {
            'global': {
                'log_level': 'INFO',
                'log_file': 'logs/hostwatch.log'
            },
            'monitoring': {
                'report_interval_seconds': 3600,
                'login_watch_interval_seconds': 10,
                'report_on_login': True,
                'report_on_suspicious_activity': True,
                'report_on_new_activity': True,
                'shutdown_grace_seconds': 10
            },
            'alerts': {
                'cpu_threshold': 90,
                'ram_threshold': 90,
                'disk_threshold': 90,
                'failed_login_attempts': 3
            },
            'collectors': {
                'top_processes': 5,
                'failed_login_window_hours': 24
            },
            'notifications': {
                'retry_attempts': 3,
                'retry_delay_seconds': 2,
                'chunk_delay_seconds': 1,
                'chat': {
                    'enabled': False,
                    'api_url': 'https://api.telegram.org',
                    'bot_token': '',
                    'chat_id': '',
                    'max_message_length': 4000,
                    'timeout': 30
                },
                'email': {
                    'enabled': False,
                    'smtp_server': 'smtp.gmail.com',
                    'smtp_port': 587,
                    'use_ssl': False,
                    'use_starttls': True,
                    'username': '',
                    'password': '',
                    'sender': '',
                    'recipients': [],
                    'max_message_length': 100000,
                    'timeout': 30
                },
                'websocket': {
                    'enabled': False,
                    'host': '0.0.0.0',
                    'port': 8765
                }
            },
            'api': {
                'enabled': False,
                'host': '127.0.0.1',
                'port': 5001
            }
        }
