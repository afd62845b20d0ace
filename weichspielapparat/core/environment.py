# weichspielapparat/core/environment.py
"""
weichspielapparat – child process environment
=============================================

The runtime links against libVLC.  Users rarely configure the loader
path for it, so before every launch we overlay the default VLC install
location onto a *copy* of the ambient environment:

• library search variable (DYLD_LIBRARY_PATH on macOS, PATH on Windows):
  appended to, unless some entry already mentions "vlc"
• VLC_PLUGIN_PATH: set only when the user has not set it

Platforms without a known default VLC location get the ambient
environment unchanged.
"""

from __future__ import annotations

import os
import re
from typing import Dict, Mapping, Optional

from weichspielapparat.core.models import PlatformDescriptor, current_platform

_VLC_RE = re.compile(r"vlc", re.IGNORECASE)


def _mentions_vlc(value: Optional[str]) -> bool:
    return bool(value) and _VLC_RE.search(value) is not None


def _key_for(env: Mapping[str, str], var: str, plat: PlatformDescriptor) -> str:
    """The spelling of `var` already present in `env`; Windows names are case-insensitive."""
    if plat.is_windows:
        for key in env:
            if key.upper() == var.upper():
                return key
    return var


def resolve_environment(
    ambient: Optional[Mapping[str, str]] = None,
    plat: Optional[PlatformDescriptor] = None,
) -> Dict[str, str]:
    """
    Return a new environment mapping for the runtime process.

    `ambient` (default: os.environ) is never modified.
    """
    env = dict(os.environ if ambient is None else ambient)
    plat = plat or current_platform()

    if plat.library_path_var and plat.library_dir:
        var = _key_for(env, plat.library_path_var, plat)
        existing = env.get(var)
        if not _mentions_vlc(existing):
            prefix = f"{existing}{plat.path_delimiter}" if existing else ""
            env[var] = f"{prefix}{plat.library_dir}"

    if plat.plugin_dir:
        var = _key_for(env, plat.plugin_path_var, plat)
        if not env.get(var):
            env[var] = plat.plugin_dir

    return env
