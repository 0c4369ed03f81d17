import logging
import sys
from pathlib import Path
from typing import Optional

COMPONENT_LOGGERS = [
    'HostWatch',
    'HostMonitor',
    'BaselineEngine',
    'DetectionEngine',
    'AlertManager',
    'NotificationRouter',
    'Scheduler',
    'APIServer'
]


def setup_logging(log_level: str = 'INFO', log_file: Optional[str] = 'logs/hostwatch.log') -> logging.Logger:
    """Setup centralized logging"""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        # Create logs directory
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    # Setup component loggers
    for logger_name in COMPONENT_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)

    return logging.getLogger('HostWatch')
