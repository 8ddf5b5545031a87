"""pkgforge: staged, fail-fast build orchestrator for packaging applications.

Turns a pinned source checkout of a meson/cargo application into a staged
package root:
  - Source acquisition at a pinned revision plus a local patch set
  - Ephemeral deploy-key provisioning (pluggable transport and key store)
  - meson configure / compile under a short-lived ssh-agent / test / install
  - Explicit state machine across the prepare, build, check and package steps
  - Exit status of the first failing tool propagated unchanged
"""

__version__ = "0.1.0"

from pkgforge.core.orchestrator import Orchestrator
from pkgforge.cli.app import app as cli

__all__ = ["Orchestrator", "cli", "__version__"]
