"""
journal_config -- engine settings.

``load_settings()`` is the single way to obtain settings at runtime.  This
package sits above ``journal_kernel``; the kernel never imports from here
and receives tolerances, prefixes and limits as constructor arguments.
"""

from journal_config.settings import (
    DEFAULTS_PATH,
    EngineSettings,
    load_settings,
    settings_from_dict,
)

__all__ = [
    "DEFAULTS_PATH",
    "EngineSettings",
    "load_settings",
    "settings_from_dict",
]
