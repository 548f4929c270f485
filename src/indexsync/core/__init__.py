"""Core primitives for indexsync: errors, logging, settings, timestamps,
watermarks and scheduling.

Import from the submodules directly, e.g.
``from indexsync.core.watermarks import WatermarkStore``.
"""
