from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError

DEFAULT_DUMP_DIR = "/var/backup/mysql/dump"
DEFAULT_DB_URL = "mysql+pymysql://"
DEFAULT_DEFAULTS_FILE = "~/.my.cnf"


def _split(value: str | list[str] | tuple[str, ...]) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return list(value)


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_octal(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 8)
    except ValueError:
        raise ConfigError(f"{name} must be an octal mode such as 077, got {raw!r}") from None


@dataclass
class BackupConfig:
    """
    Operator-overridable settings for one backup run.

    Built once at startup (usually via from_env()) and passed to every
    component. Command and option fields accept either a shell-style string
    or an argument list; both are normalised to lists.
    """
    dump_dir: Path = Path(DEFAULT_DUMP_DIR)
    delete_after_days: int = 14
    date_format: str = "%Y%m%d"
    compressor_suffix: str = "bz2"
    dump_options: list[str] = field(default_factory=lambda: ["--flush-logs"])
    dump_command: list[str] = field(default_factory=lambda: ["/usr/bin/mysqldump"])
    compressor_command: list[str] = field(default_factory=lambda: ["/bin/bzip2"])
    compressor_options: list[str] = field(
        default_factory=lambda: ["--best", "--force", "--quiet"]
    )
    umask: int = 0o077
    # Seconds allowed for one dump+compress pipeline; None waits forever.
    dump_timeout: Optional[float] = 6 * 60 * 60
    db_url: str = DEFAULT_DB_URL
    defaults_file: Optional[Path] = Path(DEFAULT_DEFAULTS_FILE)
    metrics_textfile: Optional[Path] = None

    def __post_init__(self) -> None:
        """Normalise and validate configuration parameters."""
        self.dump_dir = Path(self.dump_dir)
        self.dump_options = _split(self.dump_options)
        self.dump_command = _split(self.dump_command)
        self.compressor_command = _split(self.compressor_command)
        self.compressor_options = _split(self.compressor_options)
        if self.defaults_file is not None:
            self.defaults_file = Path(self.defaults_file).expanduser()
        if self.metrics_textfile is not None:
            self.metrics_textfile = Path(self.metrics_textfile)

        if self.delete_after_days < 0:
            raise ConfigError(
                f"delete_after_days must be >= 0, got {self.delete_after_days}"
            )
        if not self.dump_command:
            raise ConfigError("dump_command must not be empty")
        if not self.compressor_command:
            raise ConfigError("compressor_command must not be empty")
        if not self.compressor_suffix or "/" in self.compressor_suffix:
            raise ConfigError(f"Invalid compressor_suffix {self.compressor_suffix!r}")
        if not self.date_format:
            raise ConfigError("date_format must not be empty")
        if not 0 <= self.umask <= 0o777:
            raise ConfigError(f"umask out of range: {oct(self.umask)}")
        if self.dump_timeout is not None and self.dump_timeout <= 0:
            # 0 in the environment means "no timeout"
            self.dump_timeout = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "BackupConfig":
        """
        Build a configuration from environment-style overrides.

        Unset or empty variables fall back to the defaults.
        """
        def get(name: str, default: str) -> str:
            value = environ.get(name)
            return default if value is None or value == "" else value

        metrics_textfile = environ.get("METRICS_TEXTFILE") or None
        return cls(
            dump_dir=Path(get("MYSQLDUMP_DIR", DEFAULT_DUMP_DIR)),
            delete_after_days=_env_int(environ, "DELETE_AFTER", 14),
            date_format=get("DATE_FORMAT", "%Y%m%d"),
            compressor_suffix=get("COMPRESSOR_SUFFIX", "bz2"),
            # An explicitly empty MYSQLDUMP_OPTS means "no extra options".
            dump_options=environ.get("MYSQLDUMP_OPTS", "--flush-logs"),
            dump_command=get("MYSQLDUMP_CMD", "/usr/bin/mysqldump"),
            compressor_command=get("COMPRESSOR_CMD", "/bin/bzip2"),
            compressor_options=environ.get("COMPRESSOR_OPTS", "--best --force --quiet"),
            umask=_env_octal(environ, "UMASK", 0o077),
            dump_timeout=_env_int(environ, "DUMP_TIMEOUT", 6 * 60 * 60),
            db_url=get("MYSQL_URL", DEFAULT_DB_URL),
            defaults_file=Path(get("MYSQL_DEFAULTS_FILE", DEFAULT_DEFAULTS_FILE)),
            metrics_textfile=Path(metrics_textfile) if metrics_textfile else None,
        )
