"""
deptdocs — Department document management backend.

The core is the hierarchical folder access-control engine in
``deptdocs.folders``: a folder forest, explicit permission grants and an
access resolver that combines ownership, department entitlements, public
visibility, grants and inheritance.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "folders", "documents"]
