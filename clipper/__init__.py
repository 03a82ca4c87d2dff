"""
clipper - YouTube to 9:16 viral shorts, rendered remotely

Dispatches a render workflow, correlates the run it creates, polls it
to completion, and delivers the artifact. API keys for upstream services
are rotated round-robin from file-backed pools.
"""

__version__ = "0.1.0"


__all__ = ["ClipperConfig", "load_config", "get_clipper_home"]

from .config import ClipperConfig, load_config, get_clipper_home
