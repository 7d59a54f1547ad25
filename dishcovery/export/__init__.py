"""Static site export for Dishcovery menus.

Turns dashboard menu items into a self-contained bundle that carries its
own copy of the placement runtime.
"""

from dishcovery.export.site_exporter import (
    ExportResult,
    ExportStatus,
    MenuItem,
    SiteConfig,
    SiteExporter,
    load_menu,
)

__all__ = [
    "ExportResult",
    "ExportStatus",
    "MenuItem",
    "SiteConfig",
    "SiteExporter",
    "load_menu",
]
