"""
VMAudit Library Modules

This package contains the audit extraction engine for VMAudit:
- descriptor: .vmx key/value parsing with hardware version tracking
- snapshots: .vmsd snapshot metadata parsing
- scanner: descriptor discovery under a root directory
- aggregator: full audit runs and record collection
- hostinfo: installed product version lookup
- export: CSV, Excel and JSON output
- diagnostics: process-wide diagnostic log
- scheduler: daemon mode for scheduled re-audits
"""

__version__ = "1.2"

from .records import AuditRecord, AUDIT_COLUMNS, ERROR_KEYS
from .aggregator import AuditAggregator, AuditResult, run_audit
from .export import export_records
from .exceptions import InternalException, AuditError, ExportError

__all__ = [
    'AuditRecord',
    'AUDIT_COLUMNS',
    'ERROR_KEYS',
    'AuditAggregator',
    'AuditResult',
    'run_audit',
    'export_records',
    'InternalException',
    'AuditError',
    'ExportError',
]
