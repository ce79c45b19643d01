"""
Environment loading and validation for the backend service.

The process environment is optionally overlaid by a ``.env`` file (values
may reference other variables with ``${NAME}``), then validated against the
``Env`` settings schema. Every failing field is collected before reporting so
an operator can fix all of them in one edit.

Usage:
    from orpc_platform.orpc_platform.backend_service.env import get_env

    env = get_env()
    print(env.PORT, env.NODE_ENV)
"""
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Dict, Iterable, Literal, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values
from pydantic import StringConstraints, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"

_VARIABLE_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class Env(BaseSettings):
    """Validated, immutable environment configuration.

    Field declaration order is the order diagnostics are reported in.
    """

    # Configurable defaults
    PORT: int = 3000
    NODE_ENV: Literal["development", "production"] = "development"

    DATABASE_URL: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

    model_config = SettingsConfigDict(
        case_sensitive=True,
        frozen=True,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Values come only from the mapping assembled by read_environment()
        return (init_settings,)

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        try:
            make_url(v)
        except ArgumentError:
            raise ValueError("Could not parse database URL") from None
        return v

    @property
    def is_development(self) -> bool:
        return self.NODE_ENV == "development"

    @property
    def is_production(self) -> bool:
        return self.NODE_ENV == "production"


class ErrorKind(str, Enum):
    MISSING_REQUIRED_FIELD = "missing_required_field"
    TYPE_COERCION_FAILURE = "type_coercion_failure"
    ENUM_MISMATCH = "enum_mismatch"


@dataclass(frozen=True)
class Diagnostic:
    """One failed field: its path, a human readable message and the error kind."""

    field: str
    message: str
    kind: ErrorKind


class EnvValidationError(Exception):
    """Raised when the environment does not satisfy the ``Env`` schema.

    ``str(error)`` is the operator-facing report; ``error.diagnostics`` holds
    one entry per failing field in schema order.
    """

    def __init__(self, diagnostics: Iterable[Diagnostic]):
        self.diagnostics: Tuple[Diagnostic, ...] = tuple(diagnostics)
        super().__init__(format_diagnostics(self.diagnostics))


_ERROR_KINDS = {
    "missing": ErrorKind.MISSING_REQUIRED_FIELD,
    "string_too_short": ErrorKind.MISSING_REQUIRED_FIELD,
    "int_parsing": ErrorKind.TYPE_COERCION_FAILURE,
    "int_type": ErrorKind.TYPE_COERCION_FAILURE,
    "literal_error": ErrorKind.ENUM_MISMATCH,
    "enum": ErrorKind.ENUM_MISMATCH,
    "value_error": ErrorKind.TYPE_COERCION_FAILURE,
}

_EMPTY_FIELD_MESSAGE = "Field must not be empty"


def format_diagnostics(diagnostics: Iterable[Diagnostic]) -> str:
    """Render diagnostics as the multi-line startup report."""
    message = "Environment validation error(s):\n"
    for diagnostic in diagnostics:
        message += f"- {diagnostic.field}: {diagnostic.message}\n"
    return f"{message}\nCheck your .env file, then rerun the program."


def expand_variables(
    entries: Mapping[str, Optional[str]], environ: Mapping[str, str]
) -> Dict[str, str]:
    """
    Expand ``${NAME}`` and ``${NAME:-fallback}`` references in env file entries.

    Entries are processed once, left to right. A reference resolves against
    the process environment first and then against entries already expanded
    earlier in the file. References that cannot be resolved are left as-is.

    Args:
        entries: Raw key/value pairs in file order (``None`` values are skipped)
        environ: The process environment

    Returns:
        dict: Expanded entries in file order
    """
    expanded: Dict[str, str] = {}

    def resolve(match: "re.Match[str]") -> str:
        name, fallback = match.group(1), match.group(2)
        if name in environ:
            value = environ[name]
        elif name in expanded:
            value = expanded[name]
        else:
            value = None

        if fallback is not None and not value:
            return fallback
        if value is None:
            return match.group(0)
        return value

    for key, value in entries.items():
        if value is None:
            continue
        expanded[key] = _VARIABLE_REFERENCE.sub(resolve, value)
    return expanded


def read_environment(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Union[str, Path, None] = DEFAULT_ENV_FILE,
) -> Dict[str, str]:
    """
    Build the raw environment that gets validated.

    The env file only fills in keys the process environment does not define.
    A missing env file is not an error.

    Args:
        environ: Process environment (defaults to ``os.environ``)
        env_file: Path to an optional dotenv file, or None to skip it

    Returns:
        dict: Merged string mapping
    """
    process_env = dict(os.environ if environ is None else environ)

    file_entries: Mapping[str, Optional[str]] = {}
    if env_file is not None and Path(env_file).is_file():
        file_entries = dotenv_values(env_file, interpolate=False, encoding="utf-8")
        logger.debug("Loaded %d entries from %s", len(file_entries), env_file)

    return {**expand_variables(file_entries, process_env), **process_env}


def _to_diagnostics(error: ValidationError) -> Tuple[Diagnostic, ...]:
    field_order = list(Env.model_fields)
    by_field: Dict[str, Diagnostic] = {}

    for issue in error.errors():
        field = ".".join(str(part) for part in issue["loc"])
        if field in by_field:
            continue
        kind = _ERROR_KINDS.get(issue["type"], ErrorKind.TYPE_COERCION_FAILURE)
        message = issue["msg"]
        if issue["type"] == "string_too_short":
            message = _EMPTY_FIELD_MESSAGE
        by_field[field] = Diagnostic(field=field, message=message, kind=kind)

    def position(diagnostic: Diagnostic) -> int:
        root = diagnostic.field.split(".", 1)[0]
        return field_order.index(root) if root in field_order else len(field_order)

    return tuple(sorted(by_field.values(), key=position))


def validate_environment(raw: Mapping[str, str]) -> Env:
    """
    Validate a raw environment mapping against the ``Env`` schema.

    Raises:
        EnvValidationError: If any field is missing or invalid. All failing
            fields are reported together.
    """
    values = {name: raw[name] for name in Env.model_fields if name in raw}
    try:
        return Env(**values)
    except ValidationError as e:
        raise EnvValidationError(_to_diagnostics(e)) from None


def load_env(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Union[str, Path, None] = DEFAULT_ENV_FILE,
) -> Env:
    """Read, merge and validate the environment in one step."""
    env = validate_environment(read_environment(environ, env_file))
    logger.debug("Environment validated: PORT=%s NODE_ENV=%s", env.PORT, env.NODE_ENV)
    return env


@lru_cache
def get_env() -> Env:
    """
    Get the process-wide ``Env`` instance.

    Only the entry point should call this; everything else receives the
    ``Env`` it needs as an argument.
    """
    return load_env()
