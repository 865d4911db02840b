from enum import Enum


class ShareStatus(str, Enum):
    """Which tier produced a coalesced result."""

    ORIGIN = "origin"
    PROCESS = "process"
    CHANNEL = "channel"

    @property
    def log_suffix(self) -> str:
        if self is ShareStatus.ORIGIN:
            return ""
        return f"; [Query result read from {self.value} share]"
