"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore[no-redef]

DEFAULT_LOG_LEVEL = "info"
DEFAULT_MAX_DISK_UTIL_PERCENT = 90
DEFAULT_MAX_AGE_DAYS = 180
DEFAULT_MIN_BACKUPS = 14
DEFAULT_LINK_DEST_COUNT = 1
DEFAULT_RSYNC_PATH = "rsync"

# rsync accepts at most 20 --link-dest/--compare-dest/--copy-dest options.
MAX_LINK_DEST_COUNT = 20

VALID_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class ConfigError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class GlobalConfig:
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Path | None = None


@dataclass(frozen=True)
class PruneConfig:
    backup_dir: Path
    max_disk_util_percent: int = DEFAULT_MAX_DISK_UTIL_PERCENT
    max_age_days: int = DEFAULT_MAX_AGE_DAYS
    min_backups: int = DEFAULT_MIN_BACKUPS
    min_free_inodes: int | None = None
    purge_each: bool = False


@dataclass(frozen=True)
class BackupConfig:
    link_dest_count: int = DEFAULT_LINK_DEST_COUNT
    rsync_path: str = DEFAULT_RSYNC_PATH
    ssh_key: Path | None = None
    excludes: tuple[str, ...] = ()
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class Config:
    global_cfg: GlobalConfig
    prune: PruneConfig
    backup: BackupConfig

    @staticmethod
    def from_dict(
        data: dict[str, Any], overrides: dict[str, Any] | None = None
    ) -> "Config":
        """Build a config from parsed TOML tables.

        ``overrides`` holds flat ``section.key`` values (usually from the
        command line); ``None`` values are ignored so unset flags keep the
        file value or the default.
        """
        merged = {
            "global": dict(data.get("global", {})),
            "prune": dict(data.get("prune", {})),
            "backup": dict(data.get("backup", {})),
        }
        for dotted, value in (overrides or {}).items():
            if value is None:
                continue
            section, _, key = dotted.partition(".")
            merged.setdefault(section, {})[key] = value

        global_data = merged["global"]
        prune_data = merged["prune"]
        backup_data = merged["backup"]

        try:
            global_cfg = GlobalConfig(
                log_level=str(global_data.get("log_level", DEFAULT_LOG_LEVEL)),
                log_file=_optional_path(global_data.get("log_file")),
            )
            if "backup_dir" not in prune_data:
                raise ConfigError("prune.backup_dir is required")
            prune = PruneConfig(
                backup_dir=_expand_path(prune_data["backup_dir"]),
                max_disk_util_percent=_as_int(
                    prune_data.get(
                        "max_disk_util_percent", DEFAULT_MAX_DISK_UTIL_PERCENT
                    ),
                    "prune.max_disk_util_percent",
                ),
                max_age_days=_as_int(
                    prune_data.get("max_age_days", DEFAULT_MAX_AGE_DAYS),
                    "prune.max_age_days",
                ),
                min_backups=_as_int(
                    prune_data.get("min_backups", DEFAULT_MIN_BACKUPS),
                    "prune.min_backups",
                ),
                min_free_inodes=_optional_int(
                    prune_data.get("min_free_inodes"), "prune.min_free_inodes"
                ),
                purge_each=_as_bool(
                    prune_data.get("purge_each", False), "prune.purge_each"
                ),
            )
            backup = BackupConfig(
                link_dest_count=_as_int(
                    backup_data.get("link_dest_count", DEFAULT_LINK_DEST_COUNT),
                    "backup.link_dest_count",
                ),
                rsync_path=str(backup_data.get("rsync_path", DEFAULT_RSYNC_PATH)),
                ssh_key=_optional_path(backup_data.get("ssh_key")),
                excludes=tuple(str(item) for item in backup_data.get("excludes", [])),
                extra_args=tuple(
                    str(item) for item in backup_data.get("extra_args", [])
                ),
            )
        except ConfigError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid option value: {exc}") from exc
        config = Config(global_cfg=global_cfg, prune=prune, backup=backup)
        validate_config(config)
        return config


def load_config(
    path: Path | None, overrides: dict[str, Any] | None = None
) -> Config:
    if path is None:
        return Config.from_dict({}, overrides)
    if not path.is_absolute():
        raise ConfigError(f"config path must be absolute: {path}")
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:
        raise ConfigError(f"failed to read config: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc
    return Config.from_dict(data, overrides)


def validate_config(config: Config) -> None:
    _validate_log_level(config.global_cfg.log_level)
    if config.global_cfg.log_file is not None:
        _validate_path(config.global_cfg.log_file, "global.log_file")

    prune = config.prune
    _validate_path(prune.backup_dir, "prune.backup_dir")
    if not 0 <= prune.max_disk_util_percent <= 100:
        raise ConfigError("prune.max_disk_util_percent must be between 0 and 100")
    _validate_non_negative(prune.max_age_days, "prune.max_age_days")
    _validate_non_negative(prune.min_backups, "prune.min_backups")
    if prune.min_free_inodes is not None:
        _validate_non_negative(prune.min_free_inodes, "prune.min_free_inodes")

    backup = config.backup
    if not 1 <= backup.link_dest_count <= MAX_LINK_DEST_COUNT:
        raise ConfigError(
            f"backup.link_dest_count must be between 1 and {MAX_LINK_DEST_COUNT}"
        )
    if not backup.rsync_path:
        raise ConfigError("backup.rsync_path is required")


def _expand_path(raw: Any) -> Path:
    return Path(str(raw)).expanduser()


def _optional_path(raw: Any) -> Path | None:
    if raw is None or raw == "":
        return None
    return _expand_path(raw)


def _optional_int(raw: Any, field: str) -> int | None:
    if raw is None:
        return None
    return _as_int(raw, field)


def _as_int(raw: Any, field: str) -> int:
    # TOML booleans are ints to Python; reject them along with floats.
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise ConfigError(f"{field} must be an integer; got {raw!r}")
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{field} must be an integer; got {raw!r}") from None


def _as_bool(raw: Any, field: str) -> bool:
    if not isinstance(raw, bool):
        raise ConfigError(f"{field} must be true or false; got {raw!r}")
    return raw


def _validate_path(path: Path, field: str) -> None:
    if not path.is_absolute():
        raise ConfigError(f"{field} must be an absolute path: {path}")


def _validate_non_negative(value: int, field: str) -> None:
    if value < 0:
        raise ConfigError(f"{field} must be >= 0")


def _validate_log_level(value: str) -> None:
    if value.lower() not in VALID_LOG_LEVELS:
        raise ConfigError(
            f"global.log_level must be one of {sorted(VALID_LOG_LEVELS)}; got {value}"
        )
