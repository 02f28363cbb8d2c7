"""
studiokit package initialisation.

Exposes the version string (resolved from the installed distribution
metadata) and the two entry points most callers need::

    from studiokit import load, load_session_config
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("studiokit")
except PackageNotFoundError:
    # Source tree without an installed distribution.
    __version__ = "0.0.0"

from .config import load_session_config  # noqa: E402
from .plan import load  # noqa: E402

__all__: list[str] = ["__version__", "load", "load_session_config"]
