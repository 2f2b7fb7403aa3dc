"""Configuration system for wait-on.

This module implements the run options schema using Pydantic for validation,
YAML/JSON config-file loading with environment variable resolution, and the
precedence rules for combining config-file options with command-line ones.
Durations are normalized to integer milliseconds; ``timeout`` may be
unbounded (None).
"""

import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Annotated, Final, Self, cast

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from wait_on.core.errors import ConfigurationError
from wait_on.utils.durations import parse_duration, parse_optional_duration

# Matches ${VARIABLE_NAME} references in config-file string values
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Za-z0-9_]+)\}")

DEFAULT_DELAY_MS: Final[int] = 0
DEFAULT_INTERVAL_MS: Final[int] = 250
DEFAULT_WINDOW_MS: Final[int] = 750
DEFAULT_TCP_TIMEOUT_MS: Final[int] = 300

# Snake-case option names that config files may spell in camelCase
_CAMEL_ALIASES: Final[dict[str, tuple[str, ...]]] = {
    "http_timeout": ("httpTimeout",),
    "tcp_timeout": ("tcpTimeout",),
    "command_timeout": ("commandTimeout",),
}


def _to_duration(value: object) -> int:
    try:
        return parse_duration(value)
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


def _to_optional_duration(value: object) -> int | None:
    try:
        return parse_optional_duration(value)
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


Duration = Annotated[int, BeforeValidator(_to_duration)]
OptionalDuration = Annotated[int | None, BeforeValidator(_to_optional_duration)]


def default_validate_status(status: int) -> bool:
    """Accept 2xx responses only."""
    return 200 <= status <= 299


class HttpAuth(BaseModel):
    """HTTP basic authentication credentials.

    Accepts both ``user``/``pass`` and ``username``/``password`` spellings.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: Annotated[
        str | None,
        Field(validation_alias=AliasChoices("username", "user")),
    ] = None
    password: Annotated[
        str | None,
        Field(validation_alias=AliasChoices("password", "pass")),
    ] = None

    @model_validator(mode="after")
    def require_username(self) -> Self:
        """Basic auth without a user name is a configuration mistake."""
        if not self.username:
            msg = "auth requires a username (or user)"
            raise ValueError(msg)
        return self


class HttpSignature(BaseModel):
    """Shared-secret HTTP signature settings (HMAC-SHA256 over the Date header)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key_id: Annotated[str, Field(min_length=1, validation_alias=AliasChoices("key_id", "keyId"))]
    key: Annotated[str, Field(min_length=1)]


class WaitOnOptions(BaseModel):
    """Validated, defaulted options for one wait-on run.

    Field names are snake_case; the camelCase spellings used by wait-on
    config files (``httpTimeout``, ``strictSSL``, ...) are accepted as aliases.

    Invariant: ``window >= interval`` after validation. A smaller window is
    raised to the interval so that at least one further poll cycle confirms
    readiness before success is declared.
    """

    model_config = ConfigDict(extra="forbid")

    resources: Annotated[
        list[str],
        Field(min_length=1, description="Resource strings to wait for"),
    ]
    delay: Annotated[Duration, Field(description="Initial delay before the first poll, in ms")] = DEFAULT_DELAY_MS
    interval: Annotated[Duration, Field(description="Poll interval in ms")] = DEFAULT_INTERVAL_MS
    window: Annotated[
        Duration,
        Field(description="Stabilization window in ms; raised to interval when smaller"),
    ] = DEFAULT_WINDOW_MS
    timeout: Annotated[
        OptionalDuration,
        Field(description="Overall deadline in ms measured from run start; None polls forever"),
    ] = None
    reverse: Annotated[bool, Field(description="Wait for resources to become unavailable")] = False
    log: Annotated[bool, Field(description="Log progress lines")] = False
    verbose: Annotated[bool, Field(description="Log per-cycle debug output")] = False
    simultaneous: Annotated[
        int | None,
        Field(gt=0, description="Maximum probes in flight at once; None is unbounded"),
    ] = None

    # Per-protocol timeouts
    http_timeout: Annotated[
        OptionalDuration,
        Field(validation_alias=AliasChoices("http_timeout", "httpTimeout")),
    ] = None
    tcp_timeout: Annotated[
        Duration,
        Field(validation_alias=AliasChoices("tcp_timeout", "tcpTimeout")),
    ] = DEFAULT_TCP_TIMEOUT_MS
    command_timeout: Annotated[
        OptionalDuration,
        Field(validation_alias=AliasChoices("command_timeout", "commandTimeout")),
    ] = None

    # HTTP options
    headers: dict[str, str] = {}
    auth: HttpAuth | None = None
    http_signature: Annotated[
        HttpSignature | None,
        Field(validation_alias=AliasChoices("http_signature", "httpSignature")),
    ] = None
    ca: Annotated[str | None, Field(description="CA bundle path or inline PEM")] = None
    cert: Annotated[str | None, Field(description="Client certificate path")] = None
    key: Annotated[str | None, Field(description="Client private key path")] = None
    passphrase: str | None = None
    strict_ssl: Annotated[
        bool,
        Field(validation_alias=AliasChoices("strict_ssl", "strictSSL")),
    ] = True
    follow_redirect: Annotated[
        bool,
        Field(validation_alias=AliasChoices("follow_redirect", "followRedirect")),
    ] = True
    follow_all_redirects: Annotated[
        bool,
        Field(validation_alias=AliasChoices("follow_all_redirects", "followAllRedirects")),
    ] = False
    proxy: str | None = None
    validate_status: Annotated[
        Callable[[int], bool] | None,
        Field(
            validation_alias=AliasChoices("validate_status", "validateStatus"),
            exclude=True,
        ),
    ] = None

    @field_validator("resources", mode="after")
    @classmethod
    def validate_resources_not_blank(cls, v: list[str]) -> list[str]:
        """Reject blank resource strings up front.

        Args:
            v: Resource strings

        Returns:
            Resource strings with surrounding whitespace removed

        Raises:
            ValueError: If any resource string is empty
        """
        stripped = [resource.strip() for resource in v]
        if any(not resource for resource in stripped):
            msg = "Resource strings must not be empty"
            raise ValueError(msg)
        return stripped

    @model_validator(mode="after")
    def normalize_window(self) -> Self:
        """Raise the stabilization window to at least one interval."""
        if self.window < self.interval:
            self.window = self.interval
        return self

    @property
    def status_validator(self) -> Callable[[int], bool]:
        """Predicate deciding which HTTP status codes count as available."""
        return self.validate_status or default_validate_status

    @property
    def allow_redirects(self) -> bool:
        """Whether HTTP probes follow redirects."""
        return self.follow_redirect or self.follow_all_redirects


def format_validation_error(error: ValidationError, *, source: str | None = None) -> str:
    """Render a Pydantic validation error as an actionable message.

    Args:
        error: Validation error raised by Pydantic
        source: Optional origin of the options (e.g. config file path)

    Returns:
        Multi-line message naming each offending field
    """
    error_lines = ["Invalid wait-on options:", ""]
    for detail in error.errors():
        field_path = " → ".join(str(loc) for loc in detail["loc"]) or "(options)"
        error_lines.append(f"  Field: {field_path}")
        error_lines.append(f"  Error: {detail['msg']}")
        error_lines.append("")

    if source is not None:
        error_lines.append(f"Options source: {source}")

    return "\n".join(error_lines).rstrip()


def validate_options(
    options: WaitOnOptions | Mapping[str, object] | None,
    *,
    source: str | None = None,
) -> WaitOnOptions:
    """Validate user-supplied options and apply defaults.

    Args:
        options: Already-validated options, or a raw mapping
        source: Optional origin of the options for error messages

    Returns:
        Validated options

    Raises:
        ConfigurationError: If options are missing, empty or malformed
    """
    if isinstance(options, WaitOnOptions):
        return options

    if options is None:
        msg = "wait-on options are required and must include at least one resource"
        raise ConfigurationError(msg)

    if not isinstance(options, Mapping):
        msg = f"wait-on options must be a mapping, got: {type(options).__name__}"
        raise ConfigurationError(msg)

    try:
        return WaitOnOptions.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigurationError(format_validation_error(e, source=source)) from e


def resolve_env_var(value: str) -> str:
    """Resolve ``${VARIABLE}`` references in a string value.

    Args:
        value: String potentially containing environment variable references

    Returns:
        String with environment variables substituted

    Raises:
        ConfigurationError: If a referenced environment variable is not set

    Examples:
        >>> os.environ["API_HOST"] = "api.internal"
        >>> resolve_env_var("https://${API_HOST}/health")
        'https://api.internal/health'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            msg = f"Required environment variable '{var_name}' is not set"
            raise ConfigurationError(msg)
        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def resolve_env_vars(data: object) -> object:
    """Recursively resolve environment variables in config-file data.

    Strings are substituted; mappings and lists are walked; other values are
    returned unchanged.

    Args:
        data: Parsed YAML/JSON value

    Returns:
        New value with environment variables resolved
    """
    if isinstance(data, str):
        return resolve_env_var(data)
    if isinstance(data, Mapping):
        return {str(key): resolve_env_vars(value) for key, value in data.items()}  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    return data


def load_config_file(config_path: Path) -> dict[str, object]:
    """Load wait-on options from a YAML (or JSON) file.

    The file must contain a mapping of option names to values, using the
    same names (or camelCase aliases) as ``WaitOnOptions``. Values are not
    validated here so that command-line options can still be merged in.

    Args:
        config_path: Path to the configuration file

    Returns:
        Raw option mapping with environment variables resolved

    Raises:
        ConfigurationError: If the file cannot be read or parsed, is not a
            mapping, or references an unset environment variable
    """
    if not config_path.is_file():
        msg = f"Configuration file not found: {config_path}"
        raise ConfigurationError(msg)

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = f"Failed to parse configuration file: {config_path}\nYAML parsing error: {e}"
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}"
        raise ConfigurationError(msg) from e

    if raw_data is None:
        return {}

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected a mapping at root level, got: {type(raw_data).__name__}"
        )
        raise ConfigurationError(msg)

    try:
        resolved = resolve_env_vars(raw_data)
    except ConfigurationError as e:
        msg = f"Environment variable resolution failed in: {config_path}\n{e}"
        raise ConfigurationError(msg) from e

    return cast(dict[str, object], resolved)


def merge_cli_options(
    file_options: Mapping[str, object],
    cli_options: Mapping[str, object],
) -> dict[str, object]:
    """Combine config-file options with options given on the command line.

    Command-line values that were actually given (not None) override the
    file. A non-empty command-line resource list replaces the file's
    resources entirely rather than extending them.

    Args:
        file_options: Options loaded from a config file
        cli_options: Options collected from command-line flags

    Returns:
        Merged raw option mapping, ready for ``validate_options``

    Examples:
        >>> merge_cli_options({"resources": ["a"], "delay": 5}, {"resources": ["b"], "delay": None})
        {'resources': ['b'], 'delay': 5}
    """
    merged: dict[str, object] = dict(file_options)

    for name, value in cli_options.items():
        if name == "resources":
            if value:
                merged["resources"] = list(value)  # pyright: ignore[reportArgumentType]
            continue
        if value is None:
            continue
        # Drop a camelCase spelling from the file so the override is not ambiguous
        for alias in _CAMEL_ALIASES.get(name, ()):
            _ = merged.pop(alias, None)
        merged[name] = value

    return merged
