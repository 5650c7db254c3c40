"""
VMAudit exception classes.

Per-file read failures never raise; they become error records. These
exceptions cover caller-level misuse and export failures only.
"""


class InternalException(Exception):
    """Base exception for internal errors"""
    pass


class AuditError(InternalException):
    """Exception for invalid audit requests (bad root, no completed run)"""
    pass


class ExportError(AuditError):
    """Exception for export write failures"""
    def __init__(self, path, reason):
        self.path = path
        self.reason = reason

    def __str__(self):
        return f"Export to {self.path} failed: {self.reason}"
