"""rosterwatch: group membership tracker driven by on-disk roster snapshots."""

__version__ = "0.1.0"
