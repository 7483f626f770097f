"""Logging setup for convmem.

Library modules only call `logging.getLogger(__name__)`. Hosts and the CLI
call configure_logging() once; events are snake_case names with details in
`extra` under dotted keys, e.g.
`logger.warning("ingest_turn_failed", extra={"error.message": str(e)})`.

Every handler installed here passes its output through SecretRedactor.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TextIO

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_RETENTION_DAYS = 7

# Each pattern's first group is the secret; the rest of the match is kept.
REDACT_PATTERNS: tuple[str, ...] = (
    r"\b(sk-[A-Za-z0-9_-]{20,})\b",
    r"\b[A-Z0-9_]+(?:KEY|TOKEN|SECRET|PASSWORD)\s*[=:]\s*([^\s\"']{8,})",
    r"\bBearer\s+([A-Za-z0-9._\-+=]{20,})\b",
    r"\bapi-key[\"']?\s*[=:]\s*[\"']?([A-Za-z0-9._\-]{16,})",
)

# Third-party loggers capped at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "qdrant_client", "urllib3")

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "component"}


def mask_token(token: str) -> str:
    """sk-proj-abcdef...1234 -> sk-p...1234; short tokens become ***."""
    if len(token) < 12:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


@dataclass
class SecretRedactor:
    """Masks API keys and tokens in log text."""

    patterns: list[re.Pattern[str]] = field(
        default_factory=lambda: [re.compile(p, re.IGNORECASE) for p in REDACT_PATTERNS]
    )
    enabled: bool = True

    def _replace(self, match: re.Match[str]) -> str:
        secret = match.group(1)
        # already masked by an earlier pattern
        if "..." in secret:
            return match.group(0)
        start, end = match.span(1)
        offset = match.start(0)
        text = match.group(0)
        return text[: start - offset] + mask_token(secret) + text[end - offset :]

    def redact(self, text: str) -> str:
        if not self.enabled or not text:
            return text
        for pattern in self.patterns:
            text = pattern.sub(self._replace, text)
        return text


_redactor = SecretRedactor()


def component_for(logger_name: str) -> str:
    """Short component name: convmem.episodes.detector -> episodes."""
    head, _, rest = logger_name.partition(".")
    if head == "convmem" and rest:
        return rest.split(".", 1)[0]
    return head


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the fields a caller passed via `extra=`."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


def prune_old_logs(
    logs_dir: Path, retention_days: int = LOG_RETENTION_DAYS, suffix: str = ".jsonl"
) -> int:
    """Remove `*.jsonl` files last modified before the retention window.

    Returns:
        Number of files removed.
    """
    if not logs_dir.is_dir():
        return 0
    cutoff = (datetime.now(UTC) - timedelta(days=retention_days)).timestamp()
    removed = 0
    for path in logs_dir.glob(f"*{suffix}"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as e:
            logging.getLogger(__name__).debug(
                "log_prune_failed", extra={"file.path": str(path), "error.message": str(e)}
            )
    return removed


class JSONLHandler(logging.Handler):
    """Appends one redacted JSON object per record to `<logs_dir>/<date>.jsonl`.

    A new file is opened when the UTC date changes, and old files are
    pruned at that point.
    """

    def __init__(self, logs_dir: Path, retention_days: int = LOG_RETENTION_DAYS):
        super().__init__()
        logs_dir.mkdir(parents=True, exist_ok=True)
        self._logs_dir = logs_dir
        self._retention_days = retention_days
        self._date: str | None = None
        self._stream: TextIO | None = None

    def _stream_for(self, now: datetime) -> TextIO:
        date = now.strftime("%Y-%m-%d")
        if self._stream is None or date != self._date:
            if self._stream is not None:
                self._stream.close()
            self._date = date
            self._stream = (self._logs_dir / f"{date}.jsonl").open("a", encoding="utf-8")
            prune_old_logs(self._logs_dir, self._retention_days)
        return self._stream

    def _entry(self, record: logging.LogRecord, now: datetime) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": now.isoformat(),
            "level": record.levelname,
            "component": component_for(record.name),
            "logger": record.name,
            "message": _redactor.redact(record.getMessage()),
        }
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            entry["exception"] = _redactor.redact(formatter.formatException(record.exc_info))
        extras = record_extras(record)
        if extras:
            entry["extra"] = {
                key: _redactor.redact(value) if isinstance(value, str) else value
                for key, value in extras.items()
            }
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            now = datetime.now(UTC)
            stream = self._stream_for(now)
            stream.write(json.dumps(self._entry(record, now), default=str) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        super().close()


class ComponentFormatter(logging.Formatter):
    """Adds `%(component)s` and appends extras as key=value pairs.

    convmem.orchestrator -> "orchestrator | turn_processed fact.count=2"
    """

    def format(self, record: logging.LogRecord) -> str:
        record.component = component_for(record.name)
        text = super().format(record)
        pairs = " ".join(f"{k}={v}" for k, v in record_extras(record).items())
        return _redactor.redact(f"{text} {pairs}" if pairs else text)


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
) -> None:
    """Install console (and optionally JSONL file) handlers on the root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Defaults to CONVMEM_LOG_LEVEL,
            then INFO.
        use_rich: Render console output with rich.
        log_to_file: Also write JSONL files under the convmem logs directory.
    """
    from convmem.config.paths import get_logs_path

    name = (level or os.environ.get("CONVMEM_LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, name if name in LOG_LEVELS else "INFO")

    console: logging.Handler
    if use_rich:
        from rich.logging import RichHandler

        console = RichHandler(show_path=False, markup=False)
        console.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
    else:
        console = logging.StreamHandler()
        console.setFormatter(
            ComponentFormatter(
                "%(asctime)s %(levelname)-7s %(component)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    handlers = [console]

    if log_to_file:
        file_handler = JSONLHandler(get_logs_path())
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
