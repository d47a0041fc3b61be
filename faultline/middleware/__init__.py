"""
Framework integration for capturing request failures.
"""

from faultline.middleware.error_handler import error_body, install_exception_handlers, status_for_failure

__all__ = [
    "error_body",
    "install_exception_handlers",
    "status_for_failure",
]
