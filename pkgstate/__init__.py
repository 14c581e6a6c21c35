"""
pkgstate - Extended package state engine

Sits on top of a dependency cache and keeps, for every package:
- the selection intent (install, hold, deinstall, purge)
- why a pending removal happens (manual, unused, resolver)
- forbidden versions, candidate overrides, "new" flags and user tags
- a crash-safe on-disk journal (pkgstates)
"""

__version__ = "0.1.0"
__author__ = "pkgstate contributors"
