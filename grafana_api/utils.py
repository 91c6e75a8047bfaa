"""
Utility functions for the Grafana API client library
"""
import asyncio
import logging
import sys
from typing import Callable, Any, Optional

from colorama import Back, Fore, Style


# LOG sits between INFO and WARNING: shown by default, hidden when only warnings are wanted
LOG = 25
logging.addLevelName(LOG, "LOG")

# Level names in order of verbosity, index 0 shows nothing
LEVEL_NAMES: tuple[str, ...] = ("NONE", "ERROR", "WARN", "LOG", "INFO", "DEBUG")

_LEVELS: dict[str, int] = {
    "NONE": logging.CRITICAL + 10,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "LOG": LOG,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_level(level: str | int) -> int:
    """Map a level name (or its index in LEVEL_NAMES) to a logging level. Unknown levels become LOG."""
    if isinstance(level, int) and not isinstance(level, bool):
        if 0 <= level < len(LEVEL_NAMES):
            return _LEVELS[LEVEL_NAMES[level]]
        return LOG
    if isinstance(level, str):
        name = level.upper()
        if name == "WARNING":
            name = "WARN"
        return _LEVELS.get(name, LOG)
    return LOG


class ColourFormatter(logging.Formatter):
    """Formats records as `dd/mm/yyyy HH:MM:SS [LEVEL] message` with coloured tags"""

    TAG_COLOURS = {
        logging.DEBUG: Back.WHITE + Fore.BLACK + Style.DIM,
        logging.INFO: Back.YELLOW + Fore.BLACK,
        LOG: Back.WHITE + Fore.BLACK,
        logging.WARNING: Back.LIGHTRED_EX + Fore.BLACK,
        logging.ERROR: Back.RED + Fore.WHITE,
        logging.CRITICAL: Back.RED + Fore.WHITE + Style.BRIGHT,
    }

    def __init__(self, use_colour: bool = True):
        super().__init__(fmt="%(message)s", datefmt="%d/%m/%Y %H:%M:%S")
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        date = self.formatTime(record, self.datefmt)
        tag = f"[{'WARN' if record.levelno == logging.WARNING else record.levelname}]"
        if not self.use_colour:
            return f"{date} {tag} {message}"
        tag_colour = self.TAG_COLOURS.get(record.levelno, "")
        return (Back.BLUE + Fore.BLACK + date + Style.RESET_ALL + " "
                + tag_colour + tag + Style.RESET_ALL + " "
                + Fore.WHITE + message + Style.RESET_ALL)


def setup_logging(level: str | int = "LOG",
                  name: str = "grafana_api",
                  stream: Optional[Any] = None,
                  use_colour: bool = True) -> logging.Logger:
    """
    Configure a named logger with levelled, coloured console output.

    Only the named logger is touched; the root logger and other libraries are
    left alone. Calling it again replaces the handler installed previously.

    Args:
        level: NONE, ERROR, WARN, LOG, INFO or DEBUG, or the index of one of those
        name: The logger to configure
        stream: Where to write, defaults to stdout
        use_colour: Set False for plain text (e.g. when writing to a file)
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, "_grafana_api_handler", False):
            logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(ColourFormatter(use_colour=use_colour))
    console_handler._grafana_api_handler = True
    logger.addHandler(console_handler)
    return logger


def run_with_keyboard_interrupt(main_func: Callable[[], Any]) -> None:
    """
    Run an async main function with graceful KeyboardInterrupt handling.

    This function wraps asyncio.run() to catch KeyboardInterrupt (Ctrl+C) and
    provide a clean shutdown experience.

    Args:
        main_func: The async main function to run
    """
    try:
        asyncio.run(main_func())
    except KeyboardInterrupt:
        print("\n🛑 Interrupted by user (Ctrl+C)")
        print("Shutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
