"""
Error kinds raised by the RBAC core.

The HTTP layer maps each kind onto a status code in ``app.main``; library
callers catch them directly.
"""


class RbacError(Exception):
    """Base class for all RBAC errors."""


class NotFound(RbacError):
    """A title or path did not resolve to a node."""


class TitleNotFound(NotFound):
    def __init__(self, title: str):
        super().__init__(f"title not found: {title!r}")
        self.title = title


class PathNotFound(NotFound):
    def __init__(self, path: str):
        super().__init__(f"path not found: {path!r}")
        self.path = path


class InvalidArgument(RbacError):
    """Malformed input, missing confirmation, or a reference to a missing node."""


class Conflict(RbacError):
    """Duplicate edge rejected by a strict assignment graph."""


class Forbidden(RbacError):
    """Raised by ``enforce`` when a subject lacks a permission."""


class StorageFailure(RbacError):
    """The underlying database raised; the original error is chained."""


class LockTimeout(StorageFailure):
    """A partition lock could not be acquired in time."""
