"""Dishcovery - marker-anchored AR placement for menu items.

Places an author's 3D asset inside a photographed marker's frame so that it
looks the same in the live tracking session, the editor preview and the
exported site bundle.
"""

__version__ = "0.1.0"
