"""Staging of kubectl credential material.

CA certificates and kubeconfig documents passed as data (or a CA passed
as a URL) must exist as files for kubectl. They are written once per run
into a private temporary directory that is removed when the run ends,
whether it succeeded or not.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from urllib.parse import urlparse

import httpx

from kd.config.settings import Settings
from kd.errors import ConfigurationError
from kd.kubernetes.client import KubectlOptions
from kd.observability.logging import get_logger


log = get_logger(__name__)

CA_FILE_NAME = "kube-ca.pem"
KUBECONFIG_FILE_NAME = "kube-config"
DOWNLOAD_TIMEOUT = 30.0


class CredentialStager:
    """Writes credential files, creating the temp directory on first use."""

    def __init__(self, settings: Settings, stack: ExitStack) -> None:
        self.settings = settings
        self._stack = stack
        self._tmpdir: Path | None = None

    @property
    def tmpdir(self) -> Path:
        """Private directory for this run, removed when the stack closes."""
        if self._tmpdir is None:
            self._tmpdir = Path(self._stack.enter_context(tempfile.TemporaryDirectory(prefix="kd")))
            log.debug("created_temp_dir", path=str(self._tmpdir))
        return self._tmpdir

    def certificate_authority(self) -> str | None:
        """Path of the CA file kubectl should trust, if one was configured."""
        if self.settings.certificate_authority:
            return self._resolve_ca_reference(self.settings.certificate_authority)
        if self.settings.certificate_authority_data:
            path = Path(self.settings.ca_data_file)
            if not path.exists():
                _write_readonly(path, self.settings.certificate_authority_data.get_secret_value())
            return str(path)
        return None

    def kubeconfig(self) -> str | None:
        """Path of a kubeconfig written from ``kube_config_data``."""
        if not self.settings.kube_config_data:
            return None
        path = self.tmpdir / KUBECONFIG_FILE_NAME
        _write_readonly(path, self.settings.kube_config_data.get_secret_value())
        return str(path)

    def _resolve_ca_reference(self, reference: str) -> str:
        if urlparse(reference).scheme not in ("http", "https"):
            return reference

        if self.settings.certificate_authority_file:
            path = Path(self.settings.certificate_authority_file)
        else:
            path = self.tmpdir / CA_FILE_NAME

        if path.exists():
            log.debug("ca_file_exists", path=str(path), url=reference)
            return str(path)

        log.debug("downloading_ca", path=str(path), url=reference)
        try:
            response = httpx.get(reference, follow_redirects=True, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"problem downloading ca from {reference}: {e}"
            raise ConfigurationError(msg, phase="credentials") from e
        path.write_bytes(response.content)
        return str(path)


def _write_readonly(path: Path, content: str) -> None:
    path.write_text(content)
    os.chmod(path, 0o444)


@contextmanager
def staged_credentials(settings: Settings) -> Iterator[KubectlOptions]:
    """Stage credential files and yield the kubectl options that use them."""
    with ExitStack() as stack:
        stager = CredentialStager(settings, stack)
        yield KubectlOptions.from_settings(
            settings,
            certificate_authority=stager.certificate_authority(),
            kubeconfig=stager.kubeconfig(),
        )


__all__ = ["CredentialStager", "staged_credentials"]
