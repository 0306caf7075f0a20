"""
Configuration
=============

Typed configuration sections and the option accessor used by the
ingestion core, plus the JSON job configuration loader used by the runner.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import MissingMandatoryOption

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigOption:
    """A single name/value configuration option."""
    name: str
    value: str


@dataclass(frozen=True)
class ConfigItem:
    """
    A named configuration section: one source, one sink or one table.

    Attributes:
        name: Section name (e.g. 'erp', 'lake')
        options: Ordered options, or None when the section declares none
    """
    name: str
    options: Optional[Tuple[ConfigOption, ...]] = None


def find_option(name: str, options: Optional[Iterable[ConfigOption]]) -> Optional[ConfigOption]:
    """
    Find the first option called `name`.

    Args:
        name: Option name
        options: Ordered options (None is treated as empty)

    Returns:
        The first matching option, or None if there is none
    """
    for option in options or ():
        if option.name == name:
            return option
    return None


def value_of(name: str, options: Optional[Iterable[ConfigOption]], section: Optional[str] = None) -> str:
    """
    Return the value of a mandatory option.

    Args:
        name: Option name
        options: Ordered options
        section: Name of the configuration section, used in the diagnostic

    Returns:
        The option value

    Raises:
        MissingMandatoryOption: If the option is absent
    """
    option = find_option(name, options)
    if option is None:
        raise MissingMandatoryOption(name, section)
    return option.value


def parse_options(raw: Any) -> Tuple[ConfigOption, ...]:
    """
    Build options from a JSON value.

    Accepts either an object ({"name": "value"}) or an ordered list of
    {"name": ..., "value": ...} pairs. Values are coerced to strings.
    """
    if raw is None:
        return ()
    if isinstance(raw, dict):
        pairs = raw.items()
    elif isinstance(raw, list):
        pairs = []
        for entry in raw:
            if not isinstance(entry, dict) or "name" not in entry or "value" not in entry:
                raise ValueError(f"Option entries need 'name' and 'value': {entry!r}")
            pairs.append((entry["name"], entry["value"]))
    else:
        raise ValueError(f"Options must be an object or a list, got {type(raw).__name__}")
    return tuple(ConfigOption(str(name), _to_str(value)) for name, value in pairs)


def _to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class TableEntry:
    """A table to ingest together with the sections it reads from and writes to."""
    options: Tuple[ConfigOption, ...]
    source: Optional[str] = None
    sink: Optional[str] = None

    @property
    def table_name(self) -> Optional[str]:
        option = find_option("tableName", self.options)
        return option.value if option else None


@dataclass
class JobConfig:
    """
    Parsed job configuration.

    Attributes:
        sources: Source sections by declaration order
        sinks: Sink sections by declaration order
        tables: Tables to ingest
        storage: MinIO connection settings (endpoint, access_key, ...)
        logging: Logging settings (level, log_to_file, log_path)
    """
    sources: List[ConfigItem] = field(default_factory=list)
    sinks: List[ConfigItem] = field(default_factory=list)
    tables: List[TableEntry] = field(default_factory=list)
    storage: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)

    def get_source(self, name: Optional[str]) -> ConfigItem:
        """Return the named source, or the first one when name is None."""
        return _get_section(self.sources, name, "source")

    def get_sink(self, name: Optional[str]) -> ConfigItem:
        """Return the named sink, or the first one when name is None."""
        return _get_section(self.sinks, name, "sink")


def _get_section(sections: Sequence[ConfigItem], name: Optional[str], kind: str) -> ConfigItem:
    if name is None:
        if not sections:
            raise MissingMandatoryOption(
                kind, "job", message=f"Please declare at least one {kind} in the job configuration"
            )
        return sections[0]
    for section in sections:
        if section.name == name:
            return section
    raise MissingMandatoryOption(
        kind, name, message=f"Unknown {kind} '{name}': it is not declared in the job configuration"
    )


def _parse_section(raw: Dict[str, Any], kind: str) -> ConfigItem:
    if "name" not in raw:
        raise ValueError(f"Every {kind} needs a 'name': {raw!r}")
    return ConfigItem(name=str(raw["name"]), options=parse_options(raw.get("options")))


def parse_job_config(data: Dict[str, Any]) -> JobConfig:
    """
    Build a JobConfig from an already decoded JSON document.

    Args:
        data: Decoded configuration document

    Returns:
        JobConfig instance
    """
    tables = []
    for raw in data.get("tables", []):
        if isinstance(raw, list):
            tables.append(TableEntry(options=parse_options(raw)))
        else:
            tables.append(TableEntry(
                options=parse_options(raw.get("options")),
                source=raw.get("source"),
                sink=raw.get("sink"),
            ))

    return JobConfig(
        sources=[_parse_section(s, "source") for s in data.get("sources", [])],
        sinks=[_parse_section(s, "sink") for s in data.get("sinks", [])],
        tables=tables,
        storage=_storage_settings(data.get("storage", {})),
        logging=dict(data.get("logging", {})),
    )


def _storage_settings(storage: Dict[str, Any]) -> Dict[str, Any]:
    """Apply MINIO_* environment overrides to the storage section."""
    settings = dict(storage)
    for key, env_var in (
        ("endpoint", "MINIO_ENDPOINT"),
        ("access_key", "MINIO_ACCESS_KEY"),
        ("secret_key", "MINIO_SECRET_KEY"),
    ):
        if os.getenv(env_var):
            settings[key] = os.environ[env_var]
    if os.getenv("MINIO_SECURE"):
        settings["secure"] = os.environ["MINIO_SECURE"].lower() in ("1", "true", "yes")
    return settings


def load_job_config(config_path: str) -> JobConfig:
    """
    Load the job configuration from a JSON file.

    Args:
        config_path: Path to the JSON file

    Returns:
        JobConfig instance
    """
    with open(config_path, 'r') as f:
        data = json.load(f)
    job = parse_job_config(data)
    logger.info(
        f"Loaded job configuration from {config_path}: "
        f"{len(job.sources)} source(s), {len(job.sinks)} sink(s), {len(job.tables)} table(s)"
    )
    return job


def load_credentials(credentials_path: Optional[str] = None) -> Dict[str, str]:
    """
    Load source credentials.

    Reads a JSON object from `credentials_path` when given, otherwise the
    INGESTER_DB_USER / INGESTER_DB_PASSWORD environment variables.

    Returns:
        Credentials dict, forwarded unchanged to the source driver
    """
    if credentials_path:
        with open(credentials_path, 'r') as f:
            return {str(k): _to_str(v) for k, v in json.load(f).items()}

    credentials = {}
    if os.getenv("INGESTER_DB_USER"):
        credentials["user"] = os.environ["INGESTER_DB_USER"]
    if os.getenv("INGESTER_DB_PASSWORD"):
        credentials["password"] = os.environ["INGESTER_DB_PASSWORD"]
    return credentials
