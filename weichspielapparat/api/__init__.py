"""
Auto-import submodules so that
    from weichspielapparat.api import runtime
works even when they haven't been imported elsewhere.
"""

from importlib import import_module as _import

for _name in ("runtime",):
    _import(f"{__name__}.{_name}")

del _import, _name
