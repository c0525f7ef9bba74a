"""
civic-index - indexing and synchronization engine for civic records.

Civic records (bylaws, policies, resolutions, ...) live as Markdown files with
YAML front matter. This package parses them, builds a searchable index over the
whole record store, and keeps a SQLite projection of the records consistent with
the files using pluggable conflict-resolution strategies.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("civic-index")
except PackageNotFoundError:
    __version__ = "0.3.0"
