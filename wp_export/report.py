"""Progress and error reporting for an export run.

Three severities: an ephemeral status line, warnings that are accumulated
into an :class:`ErrorReport`, and fatal errors raised as :class:`ExportError`
and handled once by the CLI.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from .models import ErrorReport, MissingAsset, WarningRecord

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Unrecoverable condition; aborts the whole run."""


class StatusLine:
    """A single overwritable progress line on a terminal stream."""

    def __init__(self, stream: Optional[TextIO] = None, enabled: bool = True) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self.enabled = enabled
        self._length = 0
        self._pending = False

    def update(self, message: str) -> None:
        if not self.enabled:
            return
        self._pending = True
        self.stream.write("\r" + message)
        if len(message) < self._length:
            self.stream.write(" " * (self._length - len(message)) + "\r")
        self._length = len(message)
        self.stream.flush()

    def clear(self) -> None:
        """Erase the current line and forget it."""
        self.update("")
        self._pending = False

    def break_line(self) -> None:
        """Move past a pending status line so regular output starts clean."""
        if self._pending:
            self._pending = False
            self._length = 0
            self.stream.write("\n")
            self.stream.flush()


class _ConsoleHandler(logging.StreamHandler):
    """Stream handler that never writes on top of a pending status line."""

    def __init__(self, status_line: StatusLine, stream: Optional[TextIO] = None) -> None:
        super().__init__(stream if stream is not None else status_line.stream)
        self.status_line = status_line

    def emit(self, record: logging.LogRecord) -> None:
        self.status_line.break_line()
        super().emit(record)


def _console_level(quiet: bool, silent: bool, verbose: bool) -> int:
    if silent:
        return logging.ERROR
    if quiet:
        return logging.WARNING
    return logging.DEBUG if verbose else logging.INFO


def configure_logging(
    status_line: StatusLine,
    *,
    quiet: bool = False,
    silent: bool = False,
    verbose: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Set up root logging: console on stderr plus an optional log file.

    Raises:
        OSError: If the log file cannot be opened.
    """
    console = _ConsoleHandler(status_line)
    console.setLevel(_console_level(quiet, silent, verbose))
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    handlers: list[logging.Handler] = [console]

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=handlers,
        force=True,
    )


def flush_logging() -> None:
    """Flush every root handler, e.g. before exiting on a fatal error."""
    for handler in logging.getLogger().handlers:
        handler.flush()


class Reporter:
    """Run-scoped progress and error state.

    ``current_page`` is the link of the post being processed; every warning
    and missing asset is attributed to it.
    """

    def __init__(self, status_line: Optional[StatusLine] = None) -> None:
        self.status_line = status_line if status_line is not None else StatusLine(enabled=False)
        self.errors = ErrorReport()
        self.current_page = ""

    def status(self, message: str, *args: object) -> None:
        self.status_line.update(message % args if args else message)

    def end_status(self, message: str, *args: object) -> None:
        """Clear the status line and log a permanent summary line."""
        self.status_line.clear()
        logger.info(message, *args)

    def warn(self, message: str, *args: object) -> None:
        text = message % args if args else message
        self.errors.warnings.append(WarningRecord(page=self.current_page, message=text))
        logger.warning("%s", text)

    def missing(self, url: str, status: str) -> None:
        self.errors.missing.append(
            MissingAsset(page=self.current_page, url=url, status=status)
        )
        logger.debug("Missing asset %s (%s) in %s", url, status, self.current_page)

    def summarize(self) -> None:
        """Report end-of-run counts for each error category."""
        if self.errors.missing:
            logger.warning("There were %d missing assets", len(self.errors.missing))
        if self.errors.warnings:
            logger.warning("There were %d warnings", len(self.errors.warnings))
