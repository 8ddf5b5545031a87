"""pkgforge pipeline stages.

Usage::

    from pkgforge.stages import SourceAcquirer

    tree = SourceAcquirer(runner, Path("work/spot")).acquire(url, rev, patches)

The orchestrator wires every stage with its collaborators and runs them
through ``BaseStage.run_stage`` in ``STAGE_ORDER``.
"""

from __future__ import annotations

from pkgforge.stages.base import BaseStage
from pkgforge.stages.compile import AuthenticatedCompiler, KeyAgentSession
from pkgforge.stages.configure import BuildConfigurer
from pkgforge.stages.credentials import (
    CredentialProvisioner,
    FileKeyStore,
    HttpKeyTransport,
    KeyStore,
    KeyTransport,
)
from pkgforge.stages.install import Installer
from pkgforge.stages.source import SourceAcquirer
from pkgforge.stages.verify import Verifier

# Ordered list matching the pipeline execution order.
STAGE_ORDER: list[str] = [
    "acquire",
    "provision",
    "configure",
    "compile",
    "verify",
    "install",
]

__all__ = [
    "BaseStage",
    "STAGE_ORDER",
    # stages
    "SourceAcquirer",
    "CredentialProvisioner",
    "BuildConfigurer",
    "AuthenticatedCompiler",
    "Verifier",
    "Installer",
    # collaborators
    "KeyAgentSession",
    "KeyTransport",
    "KeyStore",
    "HttpKeyTransport",
    "FileKeyStore",
]
