"""Manifest template rendering.

Manifests are Jinja2 templates rendered with the process environment as
variables. Template helpers can generate secrets, read values from live
cluster objects and inline other (rendered) files.
"""

from __future__ import annotations

import base64
import json
import os
import secrets
import string
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2
import yaml

from kd.errors import KdError, RenderError
from kd.kubernetes.client import ClusterClient
from kd.observability.logging import get_logger


log = get_logger(__name__)

NO_VALUE = "<no value>"

_ALPHANUM = string.ascii_uppercase + string.ascii_lowercase + string.digits
SECRET_ALPHABETS = {
    "alphanum": _ALPHANUM,
    "mysql": _ALPHANUM + "_!#^&*()+{}|:<>?=",
    "yaml": _ALPHANUM + "_!#^&*()+<>?=",
}
DEFAULT_SECRET_ALPHABET = _ALPHANUM + "_~=+%^*/()[]{}/!@#$?|"


class NoValueUndefined(jinja2.ChainableUndefined):
    """Renders a missing variable as ``<no value>`` instead of failing."""

    def __str__(self) -> str:
        return NO_VALUE


@dataclass(frozen=True)
class Rendered:
    """A rendered manifest and whether it used generated secrets."""

    text: str
    secret_used: bool = False


def generate_secret(kind: str, length: int) -> str:
    """Random string from the ``kind`` alphabet, base64 encoded."""
    alphabet = SECRET_ALPHABETS.get(kind, DEFAULT_SECRET_ALPHABET)
    raw = "".join(secrets.choice(alphabet) for _ in range(int(length)))
    return base64.b64encode(raw.encode()).decode()


def to_yaml(value: Any) -> str:
    try:
        return yaml.safe_dump(value, default_flow_style=False)
    except yaml.YAMLError as e:
        log.warning("to_yaml_failed", error=str(e))
        return ""


class TemplateRenderer:
    """Renders manifest templates.

    Any use of ``secret()`` marks the result so the resource is only ever
    created, never updated with a freshly generated value.
    """

    def __init__(
        self,
        client: ClusterClient,
        *,
        allow_missing: bool = False,
        variables: Mapping[str, str] | None = None,
    ) -> None:
        self.client = client
        self.variables = dict(os.environ if variables is None else variables)
        self._secret_used = False
        self.env = jinja2.Environment(
            undefined=NoValueUndefined if allow_missing else jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
            enable_async=True,
        )
        helpers = {
            "secret": self._secret,
            "k8lookup": self._k8lookup,
            "file": self._file,
            "fileWith": self._file_with,
            "contains": lambda s, substr: substr in s,
            "hasPrefix": lambda s, prefix: s.startswith(prefix),
            "hasSuffix": lambda s, suffix: s.endswith(suffix),
            "split": lambda s, sep: s.split(sep),
        }
        converters = {
            "toYaml": to_yaml,
            "fromYaml": yaml.safe_load,
            "toJson": json.dumps,
            "fromJson": json.loads,
        }
        self.env.globals.update(helpers)
        self.env.globals.update(converters)
        self.env.filters.update(converters)

    async def render(self, template: str, *, source: str = "<string>") -> Rendered:
        """Render a manifest template.

        Raises:
            RenderError: On syntax errors, missing variables (unless allowed)
                or a failing helper.
        """
        self._secret_used = False
        try:
            text = await self._render(template, self.variables)
        except jinja2.TemplateError as e:
            msg = f"{source}: {e.message or e}"
            raise RenderError(msg, details={"source": source}) from e
        except KdError as e:
            msg = f"{source}: {e.message}"
            raise RenderError(msg, details={"source": source}) from e
        except Exception as e:
            # Helpers raise plain errors on bad arguments, e.g. fromJson on invalid JSON.
            msg = f"{source}: {e}"
            raise RenderError(msg, details={"source": source, "error": type(e).__name__}) from e
        return Rendered(text=text.replace("\n\n", "\n"), secret_used=self._secret_used)

    async def _render(self, template: str, variables: Mapping[str, Any]) -> str:
        return await self.env.from_string(template).render_async(**variables)

    def _secret(self, kind: str, length: int) -> str:
        self._secret_used = True
        return generate_secret(kind, length)

    async def _k8lookup(self, kind: str, name: str, path: str) -> str:
        return await self.client.fetch_field(kind, name, path)

    async def _file(self, path: str) -> str:
        return await self._file_with(path, {})

    async def _file_with(self, path: str, extra: Mapping[str, Any]) -> str:
        try:
            template = Path(path).read_text()
        except OSError as e:
            msg = f"cannot read {path}: {e.strerror or e}"
            raise RenderError(msg, details={"path": path}) from e
        variables = {**self.variables, **{k: str(v) for k, v in extra.items()}}
        return await self._render(template, variables)
