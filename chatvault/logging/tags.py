# chatvault/logging/tags.py
"""
Log message tags.

Every log line emitted by the engine is prefixed with the tag of the
component that produced it, so a mixed log can be filtered with grep.
"""

INDEX = "[INDEX]"
DETECT = "[DETECT]"
BATCH = "[BATCH]"
SYNC = "[SYNC]"
CONFIG = "[CONFIG]"

__all__ = ["INDEX", "DETECT", "BATCH", "SYNC", "CONFIG"]
