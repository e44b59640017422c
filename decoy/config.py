from __future__ import annotations

import os
from typing import Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .log import get_logger

DEFAULT_PORT = 80
DEFAULT_PADDING_KB = 20
USAGE = "usage: nginx-decoy [port [padding_kb]]"

logger = get_logger("config")


class Settings(BaseModel):
    """Process-wide configuration, fixed at startup."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0", min_length=1)
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    padding_kb: int = Field(default=DEFAULT_PADDING_KB, ge=0)
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    worker_threads: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    graceful_timeout: float = Field(default=5.0, ge=0)

    @property
    def padding_bytes(self) -> int:
        return self.padding_kb * 1024


# env var -> settings field
ENVIRONMENT = {
    "HOST": "host",
    "LOG_LEVEL": "log_level",
    "WORKER_THREADS": "worker_threads",
    "GRACEFUL_TIMEOUT": "graceful_timeout",
}

LABELS = {
    "port": "port",
    "padding_kb": "padding size (KiB)",
}


def field_default(field: str):
    return Settings.model_fields[field].get_default(call_default_factory=True)


def _accept(values: dict, field: str, raw: str, source: str) -> None:
    """Store ``raw`` for ``field`` if it validates, otherwise warn and keep the default."""
    try:
        Settings.model_validate({field: raw})
    except ValidationError as exc:
        reason = exc.errors()[0]["msg"]
        logger.warning(
            "Invalid %s %r (%s), falling back to %s",
            source,
            raw,
            reason,
            field_default(field),
        )
        return
    values[field] = raw


def parse_args(argv: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from positional arguments and the environment.

    ``argv`` excludes the program name. Accepted forms are no arguments,
    ``<port>`` and ``<port> <padding_kb>``. Bad values are reported and
    replaced by their defaults one by one; configuration never aborts.
    """
    environ = os.environ if environ is None else environ
    values: dict = {}

    for name, field in ENVIRONMENT.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        if field == "log_level":
            raw = raw.strip().upper()
        _accept(values, field, raw, f"environment variable {name}")

    if len(argv) > 2:
        logger.warning("Too many arguments (%d), using defaults. %s", len(argv), USAGE)
        argv = ()

    for field, raw in zip(("port", "padding_kb"), argv):
        _accept(values, field, raw, LABELS[field])

    return Settings.model_validate(values)
