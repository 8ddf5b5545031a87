"""Credential provisioning: fetch an ephemeral deploy key and store it.

The upstream contract is weak: a bearer token in a URL query string, the
key returned as raw bytes, stored unencrypted. That is flagged rather than
papered over. Transport (``KeyTransport``) and storage (``KeyStore``) are
Protocols so either can be replaced without touching the pipeline.

Nothing in this module logs key bytes, the token, or a URL with its query
string.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

import requests

from pkgforge.core.errors import CredentialError
from pkgforge.core.runner import Deadline
from pkgforge.models.artifacts import CredentialBundle
from pkgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


def safe_url(url: str) -> str:
    """*url* without query string or fragment, for messages."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyTransport(Protocol):
    """Fetches raw private-key bytes from a token endpoint."""

    def fetch(
        self, endpoint: str, auth_token: str, timeout: float | None = None
    ) -> bytes:
        ...


@runtime_checkable
class KeyStore(Protocol):
    """Holds key material plus its host-routing configuration."""

    def store(
        self, key: bytes, host_pattern: str, hostname: str, user: str
    ) -> CredentialBundle:
        ...

    def discard(self, bundle: CredentialBundle) -> None:
        ...


# ---------------------------------------------------------------------------
# Default implementations
# ---------------------------------------------------------------------------


class HttpKeyTransport:
    """One GET to the endpoint with the token as a query parameter.

    Parameters
    ----------
    token_param:
        Name of the query parameter carrying the token.
    session:
        ``requests.Session`` to use; a fresh one is created otherwise.
    """

    def __init__(
        self,
        token_param: str = "token",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.token_param = token_param
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch(
        self, endpoint: str, auth_token: str, timeout: float | None = None
    ) -> bytes:
        where = safe_url(endpoint)
        try:
            response = self._session.get(
                endpoint,
                params={self.token_param: auth_token},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.RequestException as exc:
            # Drop the cause: requests' messages embed the full URL, token included.
            raise CredentialError(
                f"key request to {where} failed: {type(exc).__name__}"
            ) from None

        if response.status_code in (401, 403):
            raise CredentialError(
                f"{where} rejected the auth token (HTTP {response.status_code})"
            )
        if not 200 <= response.status_code < 300:
            raise CredentialError(
                f"{where} returned HTTP {response.status_code}"
            )
        if not response.content:
            raise CredentialError(f"{where} returned an empty key")
        return response.content


_BLOCK_BEGIN = "# pkgforge:begin {host}"
_BLOCK_END = "# pkgforge:end {host}"


class FileKeyStore:
    """Key files plus an isolated ssh config under one private directory.

    The ssh config is never the user's ``~/.ssh/config``; consumers point
    ssh at it explicitly with ``ssh -F``. Storing for a host replaces that
    host's key and stanza, so one stanza per host exists at any time.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.config_path = self.root / "ssh_config"

    def key_path_for(self, host_pattern: str) -> Path:
        slug = re.sub(r"[^A-Za-z0-9_.-]", "_", host_pattern)
        return self.root / f"id_{slug}"

    def store(
        self, key: bytes, host_pattern: str, hostname: str, user: str
    ) -> CredentialBundle:
        self.root.mkdir(parents=True, exist_ok=True)
        os.chmod(self.root, 0o700)

        key_path = self.key_path_for(host_pattern)
        _write_private(key_path, key)

        stanza = "\n".join([
            _BLOCK_BEGIN.format(host=host_pattern),
            f"Host {host_pattern}",
            f"    HostName {hostname}",
            f"    User {user}",
            f"    IdentityFile {key_path.resolve()}",
            "    IdentitiesOnly yes",
            _BLOCK_END.format(host=host_pattern),
            "",
        ])
        config = self._without_stanza(self._read_config(), host_pattern)
        _write_private(self.config_path, (config + stanza).encode("utf-8"))

        return CredentialBundle(
            key_path=key_path,
            config_path=self.config_path,
            host_pattern=host_pattern,
            hostname=hostname,
            user=user,
        )

    def discard(self, bundle: CredentialBundle) -> None:
        """Overwrite and unlink the key, drop its stanza."""
        key_path = Path(bundle.key_path)
        if key_path.exists():
            size = key_path.stat().st_size
            with open(key_path, "r+b") as fh:
                fh.write(b"\0" * size)
                fh.flush()
                os.fsync(fh.fileno())
            key_path.unlink()
            logger.info("discarded key for %s", bundle.host_pattern)

        config_path = Path(bundle.config_path)
        if config_path.exists():
            remaining = self._without_stanza(
                config_path.read_text(encoding="utf-8"), bundle.host_pattern
            )
            if remaining.strip():
                _write_private(config_path, remaining.encode("utf-8"))
            else:
                config_path.unlink()

    def stanza_count(self, host_pattern: str) -> int:
        return self._read_config().count(_BLOCK_BEGIN.format(host=host_pattern))

    def _read_config(self) -> str:
        if not self.config_path.exists():
            return ""
        return self.config_path.read_text(encoding="utf-8")

    @staticmethod
    def _without_stanza(config: str, host_pattern: str) -> str:
        begin = re.escape(_BLOCK_BEGIN.format(host=host_pattern))
        end = re.escape(_BLOCK_END.format(host=host_pattern))
        return re.sub(rf"{begin}\n.*?{end}\n?", "", config, flags=re.DOTALL)


def _write_private(path: Path, data: bytes) -> None:
    """Write *data* to *path*, readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    os.chmod(path, 0o600)


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


class CredentialProvisioner(BaseStage):
    """Produces the CredentialBundle.

    Parameters
    ----------
    transport / key_store:
        Pluggable fetch and storage backends.
    token_endpoint / auth_token:
        Where to fetch the key and the token proving we may. Used by
        ``execute``; ``provision`` takes them explicitly.
    require_https:
        Refuse endpoints that would send the token in the clear.
    """

    error_type: ClassVar[type[CredentialError]] = CredentialError

    def __init__(
        self,
        transport: KeyTransport,
        key_store: KeyStore,
        *,
        token_endpoint: str = "",
        auth_token: str = "",
        host_pattern: str = "github.com",
        hostname: str | None = None,
        user: str = "git",
        require_https: bool = False,
        deadline: Deadline | None = None,
    ) -> None:
        self._transport = transport
        self._key_store = key_store
        self._token_endpoint = token_endpoint
        self._auth_token = auth_token
        self._host_pattern = host_pattern
        self._hostname = hostname or host_pattern
        self._user = user
        self._require_https = require_https
        self._deadline = deadline or Deadline()

    @property
    def stage_id(self) -> str:
        return "provision"

    @property
    def display_name(self) -> str:
        return "Credential Provisioning"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        bundle = self.provision(self._token_endpoint, self._auth_token)
        return {"credential": bundle, "_message": f"key for {bundle.host_pattern}"}

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def provision(self, token_endpoint: str, auth_token: str) -> CredentialBundle:
        if not token_endpoint:
            raise CredentialError("no credential endpoint configured")
        if not auth_token:
            raise CredentialError("no auth token configured")

        if urlsplit(token_endpoint).scheme != "https":
            if self._require_https:
                raise CredentialError(
                    f"refusing non-https credential endpoint {safe_url(token_endpoint)}"
                )
            logger.warning(
                "credential endpoint %s is not https; the token travels in the clear",
                safe_url(token_endpoint),
            )

        key = self._transport.fetch(
            token_endpoint,
            auth_token,
            timeout=self._deadline.bound(DEFAULT_REQUEST_TIMEOUT),
        )
        if not key:
            raise CredentialError(f"{safe_url(token_endpoint)} returned an empty key")

        bundle = self._key_store.store(
            key, self._host_pattern, self._hostname, self._user
        )
        logger.info(
            "provisioned key for %s (%s@%s)",
            bundle.host_pattern,
            bundle.user,
            bundle.hostname,
        )
        return bundle
