"""
VMAudit Audit Aggregator

Runs one complete audit: resolves the host product version, discovers
descriptors, parses each descriptor and its snapshot metadata, and publishes
the concatenated records as an immutable AuditResult once the run finishes.
"""

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .descriptor import parse_descriptor
from .diagnostics import get_logger
from .exceptions import AuditError
from .export import export_result
from .hostinfo import NOT_DETECTED, resolve_host_version
from .records import AuditRecord
from .scanner import scan_descriptors
from .snapshots import parse_snapshot_metadata


logger = get_logger("aggregator")

ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class AuditResult:
    """Immutable snapshot of one finished audit run"""
    root: str
    host_version: str
    records: Tuple[AuditRecord, ...] = ()
    vm_names: Tuple[str, ...] = ()
    started_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    finished_at: Optional[datetime.datetime] = None

    @property
    def vm_count(self) -> int:
        return len(self.vm_names)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def errors(self) -> List[AuditRecord]:
        return [r for r in self.records if r.is_error]

    def snapshot_records(self) -> List[AuditRecord]:
        return [r for r in self.records if r.is_snapshot]

    def records_for(self, vm_name: str) -> List[AuditRecord]:
        return [r for r in self.records if r.vm_name == vm_name]


class AuditAggregator:
    """
    Owns the state of audit runs against one root directory.

    ``records`` and ``host_version`` always describe the last completed run;
    they are replaced together when ``run()`` returns.
    """

    def __init__(self, root: Union[str, Path],
                 version_resolver: Callable[[], str] = resolve_host_version):
        """
        Args:
            root: Directory tree to audit (validated by the caller)
            version_resolver: Callable returning the host product version
        """
        self.root = str(root)
        self.version_resolver = version_resolver
        self.records: Tuple[AuditRecord, ...] = ()
        self.host_version: Optional[str] = None
        self.last_result: Optional[AuditResult] = None

    def _resolve_host_version(self) -> str:
        try:
            version = self.version_resolver()
        except Exception as e:
            logger.warning(f"Host version lookup failed: {e}")
            return NOT_DETECTED
        return version or NOT_DETECTED

    def run(self, progress: Optional[ProgressCallback] = None) -> AuditResult:
        """
        Execute a full audit run.

        Args:
            progress: Optional callback(current, total, vm_name) invoked after
                each VM is processed

        Returns:
            AuditResult for this run. Nothing from previous runs is reused.
        """
        started_at = datetime.datetime.now()
        host_version = self._resolve_host_version()
        descriptors = scan_descriptors(self.root)
        total = len(descriptors)

        logger.info(f"Audit started: root={self.root} descriptors={total} host_version={host_version}")

        collected: List[AuditRecord] = []
        vm_names: List[str] = []
        for idx, descriptor in enumerate(descriptors, 1):
            collected.extend(parse_descriptor(descriptor.path, descriptor.vm_name))
            collected.extend(parse_snapshot_metadata(descriptor.directory, descriptor.vm_name))
            vm_names.append(descriptor.vm_name)
            if progress:
                progress(idx, total, descriptor.vm_name)

        result = AuditResult(
            root=self.root,
            host_version=host_version,
            records=tuple(collected),
            vm_names=tuple(vm_names),
            started_at=started_at,
            finished_at=datetime.datetime.now(),
        )

        # Publish only once the run is complete
        self.records = result.records
        self.host_version = result.host_version
        self.last_result = result

        logger.info(f"Audit finished: {len(result.records)} records, {len(result.errors())} errors")
        return result

    def export(self, output_file: Union[str, Path], fmt: str = "csv",
               records: Optional[Iterable[AuditRecord]] = None) -> str:
        """
        Export the last completed run, or the given subset of its records.

        Raises:
            AuditError: if no run has completed yet
            ExportError: if the file cannot be written
        """
        if self.last_result is None:
            raise AuditError("No audit has been run yet; nothing to export")
        return export_result(self.last_result, output_file, fmt, records=records)


def run_audit(root: Union[str, Path]) -> Tuple[Tuple[AuditRecord, ...], str]:
    """Run a full audit against root and return (records, host_version)."""
    result = AuditAggregator(root).run()
    return result.records, result.host_version
