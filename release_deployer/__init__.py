"""release-deployer - Unattended blue/green deployment of GitHub releases."""

__version__ = "1.0.0"

__all__ = ["__version__"]
