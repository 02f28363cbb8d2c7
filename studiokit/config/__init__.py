"""
Configuration package façade.

* :func:`load_session_config` – merge defaults, environment and flags into a
  single :class:`SessionConfig`.
* :class:`SessionConfig` – frozen Pydantic model passed through the call chain.
"""

from .loader import ConfigError, load_session_config  # noqa: F401
from .session import SessionConfig, studio_slug  # noqa: F401

__all__: list[str] = ["load_session_config", "SessionConfig", "ConfigError", "studio_slug"]
