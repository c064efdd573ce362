"""kd run configuration.

Uses Pydantic Settings so every option can come from a command-line flag
or from its environment variable (each also accepted with the
``PLUGIN_`` prefix of CI plugin mode). The resulting ``Settings`` value
is frozen and passed explicitly to everything that needs it.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from kd.errors import ConfigurationError


DEFAULT_CA_FILE = "/tmp/kube-ca.pem"

_DURATION_PART = r"\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> float:
    """Parse ``3m``, ``1m30s``, ``500ms`` or plain seconds into seconds."""
    if isinstance(value, int | float):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass
    if not _DURATION_RE.fullmatch(text):
        msg = f"invalid duration {text!r}"
        raise ValueError(msg)
    total = 0.0
    for match in re.finditer(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)", text):
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    return total


def format_duration(seconds: float) -> str:
    """Format seconds as a Go style duration (``3m0s``)."""
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    text = f"{secs:g}s"
    if hours:
        return f"{int(hours)}h{int(minutes)}m{text}"
    if minutes:
        return f"{int(minutes)}m{text}"
    return text


def _env(*names: str) -> AliasChoices:
    """Environment names for a field, each also accepted with ``PLUGIN_``."""
    choices: list[str] = []
    for name in names:
        choices.extend([name, f"PLUGIN_{name}"])
    return AliasChoices(*choices)


class Settings(BaseSettings):
    """Options for one kd run."""

    model_config = SettingsConfigDict(
        env_prefix="KD_",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
    )

    # Output
    debug: bool = Field(default=False, validation_alias=_env("DEBUG"))
    debug_templates: bool = Field(
        default=False,
        validation_alias=_env("DEBUG_TEMPLATES"),
        description="Log every rendered manifest",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        validation_alias=AliasChoices("KD_LOG_FORMAT"),
    )

    # Run modes
    dry_run: bool = Field(
        default=False,
        validation_alias=AliasChoices("DRY_RUN"),
        description="Render and parse manifests without deploying",
    )
    delete: bool = Field(default=False, description="Delete the resources instead of applying")
    replace: bool = Field(
        default=False,
        validation_alias=_env("KUBE_REPLACE"),
        description="Use replace instead of apply for existing objects",
    )
    create_only: bool = Field(
        default=False,
        validation_alias=_env("CREATE_ONLY"),
        description="Only create resources, skip those that exist",
    )
    create_only_resources: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=_env("CREATE_ONLY_RESOURCES"),
        description="kind/name pairs to only create",
    )
    allow_missing: bool = Field(
        default=False,
        validation_alias=AliasChoices("ALLOW_MISSING"),
        description="Render missing template variables as <no value>",
    )
    fail_superseded: bool = Field(
        default=False,
        validation_alias=_env("FAIL_SUPERSEDED"),
        description="Fail a watch when a newer rollout supersedes it",
    )

    # Cluster access
    kube_server: str | None = Field(default=None, validation_alias=_env("KUBE_SERVER"))
    kube_token: SecretStr | None = Field(default=None, validation_alias=_env("KUBE_TOKEN"))
    kube_username: str | None = Field(default=None, validation_alias=_env("KUBE_USERNAME"))
    kube_password: SecretStr | None = Field(default=None, validation_alias=_env("KUBE_PASSWORD"))
    kube_config_data: SecretStr | None = Field(
        default=None,
        validation_alias=_env("KUBE_CONFIG_DATA"),
    )
    context: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KUBE_CONTEXT", "PLUGIN_CONTEXT"),
    )
    namespace: str | None = Field(default=None, validation_alias=_env("KUBE_NAMESPACE"))
    insecure_skip_tls_verify: bool = Field(
        default=False,
        validation_alias=_env("INSECURE_SKIP_TLS_VERIFY"),
    )
    certificate_authority: str | None = Field(
        default=None,
        validation_alias=_env("KUBE_CERTIFICATE_AUTHORITY"),
        description="Path or URL of the API server CA",
    )
    certificate_authority_data: SecretStr | None = Field(
        default=None,
        validation_alias=_env("KUBE_CERTIFICATE_AUTHORITY_DATA"),
    )
    certificate_authority_file: str | None = Field(
        default=None,
        validation_alias=_env("KUBE_CERTIFICATE_AUTHORITY_FILE"),
        description="Where CA data or a downloaded CA is saved",
    )

    # Inputs
    config_file: str | None = Field(default=None, validation_alias=_env("CONFIG_FILE"))
    files: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=_env("FILES"),
    )
    extra_args: tuple[str, ...] = Field(
        default=(),
        description="Arguments appended to every kubectl submission",
    )

    # Watch timing
    timeout: float = Field(default=180.0, gt=0, validation_alias=_env("TIMEOUT"))
    check_interval: float = Field(default=1.0, gt=0, validation_alias=_env("CHECK_INTERVAL"))
    initial_delay: float = Field(
        default=3.0,
        ge=0,
        description="Pause after submission before the first status poll",
    )
    fetch_retries: int = Field(default=3, ge=1, description="Status fetch attempts per poll")
    fetch_retry_delay: float = Field(default=2.0, ge=0)

    @field_validator("files", "create_only_resources", mode="before")
    @classmethod
    def split_comma_separated(cls, v: Any) -> Any:
        """Accept comma separated strings from the environment."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("create_only_resources", mode="after")
    @classmethod
    def validate_resource_pairs(cls, v: list[str]) -> list[str]:
        """Every create-only selector must be ``kind/name``."""
        for item in v:
            parts = item.split("/")
            if len(parts) != 2 or not all(parts):
                msg = f"invalid resource type {item}, expecting kind/name"
                raise ValueError(msg)
        return v

    @field_validator("timeout", "check_interval", "initial_delay", "fetch_retry_delay", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        """Accept Go style duration strings."""
        if v is None:
            return v
        return parse_duration(v)

    @property
    def create_only_pairs(self) -> list[tuple[str, str]]:
        """Create-only selectors split into ``(kind, name)``."""
        return [tuple(item.split("/", 1)) for item in self.create_only_resources]  # type: ignore[misc]

    @property
    def ca_data_file(self) -> str:
        """Destination for ``certificate_authority_data``."""
        return self.certificate_authority_file or DEFAULT_CA_FILE


def load_settings(**overrides: Any) -> Settings:
    """Build settings from the environment, overridden by explicit values.

    A ``config_file`` (from the overrides or the environment) is loaded
    into the process environment first, without replacing variables that
    are already set, so templates see the same variables.

    Raises:
        ConfigurationError: If the dotenv file is missing or a value is invalid.
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = Settings(**overrides)
        if settings.config_file:
            path = Path(settings.config_file)
            if not path.is_file():
                msg = f"error loading .env file {settings.config_file}"
                raise ConfigurationError(msg, details={"path": str(path)})
            load_dotenv(path, override=False)
            settings = Settings(**overrides)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"invalid configuration: {errors}") from e
    return settings


__all__ = [
    "DEFAULT_CA_FILE",
    "Settings",
    "format_duration",
    "load_settings",
    "parse_duration",
]
