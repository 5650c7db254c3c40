"""
Audit record model shared by the parsers, the aggregator and the exporters.
"""

from dataclasses import dataclass
from typing import Tuple


# Export column order
AUDIT_COLUMNS = ('VMName', 'Key', 'Value', 'VMVersion', 'SnapshotUID')

# Record keys
SNAPSHOT_META_KEY = 'SnapshotMeta'
DESCRIPTOR_ERROR_KEY = 'Error'
SNAPSHOT_ERROR_KEY = 'SnapshotMetaError'
ERROR_KEYS = (DESCRIPTOR_ERROR_KEY, SNAPSHOT_ERROR_KEY)


@dataclass(frozen=True)
class AuditRecord:
    """One row of the audit collection."""
    vm_name: str
    key: str
    value: str
    vm_version: str = ""
    snapshot_uid: str = ""

    @property
    def is_error(self) -> bool:
        return self.key in ERROR_KEYS

    @property
    def is_snapshot(self) -> bool:
        return self.key == SNAPSHOT_META_KEY

    def as_row(self) -> Tuple[str, str, str, str, str]:
        """Values in AUDIT_COLUMNS order"""
        return (self.vm_name, self.key, self.value, self.vm_version, self.snapshot_uid)

    def as_dict(self) -> dict:
        return dict(zip(AUDIT_COLUMNS, self.as_row()))
