"""
labdash exceptions
"""

from __future__ import annotations


class LabdashError(Exception):
    """Base exception for all labdash errors"""

    pass


class ConfigError(LabdashError):
    """Raised when the config file is missing or invalid"""

    pass


class FetchError(LabdashError):
    """Raised when a background fetch from the CI provider fails.

    Transient by nature: the view keeps showing its last good data and the next
    scheduled or manual refresh retries.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InputSourceError(LabdashError):
    """Raised when the keyboard stream is closed or broken"""

    pass


class RenderError(LabdashError):
    """Raised when writing to the terminal fails"""

    pass
