"""
Logging Utility for the Simulator Backend

Colored, structured console logging:
- Level colors and per-component icons
- Section separators around each case request
- Key/value blocks for scores and progress
- Request/response lines with timing
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    VALUE = '\033[92m'      # Bright Green
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with level colors and an icon per simulator component."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last segment of the logger name
    COMPONENT_ICONS = {
        'case_generator': '🩺',
        'patient_simulator': '🗣️',
        'case_session': '💬',
        'epa_evaluator': '📝',
        'case_completion': '🏁',
        'progress_updater': '📈',
        'hint_budget': '💡',
        'notification_manager': '🔔',
        'user_profile_manager': '👤',
        'storage': '💾',
        'auth': '🔐',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        icon = self.COMPONENT_ICONS.get(record.name.split('.')[-1], self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, timestamp_color = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = timestamp_color = ''

        formatted = (
            f"{timestamp_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def format_data(data: Any, indent: int = 2, colors: bool = False) -> str:
    """Indented key/value rendering; lists longer than five are truncated."""
    key_color, value_color, reset = (Colors.KEY, Colors.VALUE, Colors.RESET) if colors else ('', '', '')
    pad = ' ' * indent

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = format_data(value, indent + 2, colors)
            else:
                rendered = f"{value_color}{value}{reset}"
            lines.append(f"{pad}{key_color}{key}{reset}: {rendered}")
        return "{\n" + "\n".join(lines) + f"\n{' ' * (indent - 2)}}}"

    if isinstance(data, list):
        shown = data[:3] if len(data) > 5 else data
        items = [f"{pad}{format_data(item, indent + 2, colors)}" for item in shown]
        if len(data) > 5:
            items.append(f"{pad}... ({len(data)} items total)")
        return "[\n" + ",\n".join(items) + f"\n{' ' * (indent - 2)}]"

    return str(data)


class StructuredLogger:
    """Logger with section grouping and key/value payloads."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)
        self.colors = sys.stdout.isatty()

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        if not data:
            return message
        return f"{message}\n{format_data(data, colors=self.colors)}"

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Open a block for one case operation."""
        separator = "=" * 80
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"  → {title}", data))

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        error_info = f" Error: {type(error).__name__}: {error}" if error else ""
        self.logger.error(self._with_data(f"{message}{error_info}", data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, user_id: Optional[str] = None):
        short_id = user_id[:20] + "..." if user_id and len(user_id) > 20 else user_id
        self.logger.info(f"📥 REQUEST: {method} {path} (user: {short_id})")

    def response(self, status: int, path: str, duration: Optional[float] = None):
        timing = f" in {duration * 1000:.2f}ms" if duration is not None else ""
        self.logger.info(f"📤 RESPONSE: {status} {path}{timing}")


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'urllib3', 'openai'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
