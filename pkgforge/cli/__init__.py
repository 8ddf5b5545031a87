"""pkgforge command-line interface."""
