"""Terminal rendering of pipeline results."""

from pkgforge.monitor.renderer import ResultRenderer

__all__ = ["ResultRenderer"]
