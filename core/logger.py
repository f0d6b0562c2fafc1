"""
Folio - Logging System
Timestamped console output with rich formatting + file logging
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

# Custom theme for console output
THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "timestamp": "dim white",
    "header": "bold magenta",
    "config": "dim cyan",
})

# Global console instance
console = Console(theme=THEME)

# Module-level logger instance
_logger: Optional[logging.Logger] = None


def setup_logging(
    log_file_path: Optional[Path] = None,
    level: str = "INFO",
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Initialize the logging system.

    Args:
        log_file_path: Path to the diagnostic log file
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_to_file: Whether to write logs to file

    Returns:
        Configured logger instance
    """
    global _logger

    _logger = logging.getLogger("folio")
    _logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _logger.handlers.clear()

    if log_to_file and log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        _logger.addHandler(file_handler)

    return _logger


def get_timestamp() -> str:
    """Get formatted timestamp for console output."""
    return datetime.now().strftime("%H:%M:%S")


def log(message: str, level: str = "info", prefix: str = "") -> None:
    """
    Log a message to both console and file.

    Args:
        message: The message to log
        level: Log level (info, warning, error, success)
        prefix: Optional emoji/prefix for console output
    """
    timestamp = get_timestamp()

    style = level if level in ("info", "warning", "error", "success") else "info"
    prefix_str = f"{prefix} " if prefix else ""
    console.print(
        f"[timestamp][{timestamp}][/timestamp] {escape(prefix_str + message)}",
        style=style,
        highlight=False,
    )

    if _logger:
        log_level = logging.INFO if level == "success" else getattr(logging, level.upper(), logging.INFO)
        _logger.log(log_level, f"{prefix_str}{message}")


def log_info(message: str, prefix: str = "") -> None:
    """Log an info message."""
    log(message, "info", prefix)


def log_success(message: str, prefix: str = "") -> None:
    """Log a success message."""
    log(message, "success", prefix or "✅")


def log_warning(message: str, prefix: str = "") -> None:
    """Log a warning message."""
    log(message, "warning", prefix or "⚠️")


def log_error(message: str, prefix: str = "") -> None:
    """Log an error message."""
    log(message, "error", prefix or "❌")


def log_header(title: str) -> None:
    """Print a section header."""
    separator = "=" * 60
    console.print(f"\n[header]{separator}[/header]")
    console.print(f"[header]{escape(title)}[/header]")
    console.print(f"[header]{separator}[/header]")

    if _logger:
        _logger.info(separator)
        _logger.info(title)
        _logger.info(separator)


def log_section(title: str, emoji: str = "📋") -> None:
    """Print a section title."""
    heading = escape(f"{emoji} {title}")
    console.print(f"\n[timestamp][{get_timestamp()}][/timestamp] [header]{heading}:[/header]")

    if _logger:
        _logger.info(f"{title}:")


def log_subsection(message: str, emoji: str = "", indent: int = 1) -> None:
    """Print a subsection item."""
    indent_str = "   " * indent
    prefix = f"{emoji} " if emoji else ""
    console.print(
        f"[timestamp][{get_timestamp()}][/timestamp] [config]{escape(indent_str + prefix + message)}[/config]",
        highlight=False,
    )

    if _logger:
        _logger.info(f"{indent_str}{prefix}{message}")
