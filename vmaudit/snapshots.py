"""
VMAudit Snapshot Metadata Parser

Parses the ``<vm>.vmsd`` file that sits next to a descriptor. Only lines
containing ``snapshot.`` are kept; each one becomes a ``SnapshotMeta`` record.
Descriptions come from the first matcher in SNAPSHOT_MATCHERS that accepts
the line.
"""

import os
import re
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .descriptor import read_lines
from .diagnostics import get_logger
from .records import AuditRecord, SNAPSHOT_META_KEY, SNAPSHOT_ERROR_KEY


SNAPSHOT_EXTENSION = ".vmsd"
SNAPSHOT_LINE_MARKER = "snapshot."

DISPLAY_NAME_RE = re.compile(r'snapshot\.([^.]+)\.displayName\s*=\s*"(.*?)"')
SNAPSHOT_ID_RE = re.compile(r'snapshot\.([^.]+)')

SnapshotMatch = Optional[Tuple[str, str]]

logger = get_logger("snapshots")


# ======== LINE MATCHERS ========

def match_display_name(line: str) -> SnapshotMatch:
    """snapshot.<id>.displayName = "<description>" -> (id, description)"""
    match = DISPLAY_NAME_RE.search(line)
    if match:
        return match.group(1), match.group(2)
    return None


def match_snapshot_id(line: str) -> SnapshotMatch:
    """snapshot.<id> anywhere -> (id, raw line)"""
    match = SNAPSHOT_ID_RE.search(line)
    if match:
        return match.group(1), line.strip()
    return None


SNAPSHOT_MATCHERS: List[Callable[[str], SnapshotMatch]] = [
    match_display_name,
    match_snapshot_id,
]


def match_snapshot_line(line: str) -> Tuple[str, str]:
    """
    Return (uid, description) from the first matcher that accepts the line.

    Lines no matcher accepts get an empty uid and the raw line.
    """
    for matcher in SNAPSHOT_MATCHERS:
        result = matcher(line)
        if result is not None:
            return result
    return "", line.strip()


# ======== FILE PARSING ========

def snapshot_file_path(vm_dir: Union[str, Path], vm_name: str) -> str:
    return os.path.join(str(vm_dir), f"{vm_name}{SNAPSHOT_EXTENSION}")


def parse_snapshot_lines(lines, vm_name: str) -> List[AuditRecord]:
    records = []
    for line in lines:
        if SNAPSHOT_LINE_MARKER not in line:
            continue
        uid, description = match_snapshot_line(line)
        records.append(AuditRecord(
            vm_name=vm_name,
            key=SNAPSHOT_META_KEY,
            value=description,
            snapshot_uid=uid,
        ))
    return records


def parse_snapshot_metadata(vm_dir: Union[str, Path], vm_name: str) -> List[AuditRecord]:
    """
    Parse the snapshot metadata file for one VM.

    Args:
        vm_dir: Directory holding the VM's descriptor
        vm_name: VM name (descriptor base name)

    Returns:
        Ordered SnapshotMeta records; empty when no .vmsd file exists. An
        unreadable file yields a single SnapshotMetaError record.
    """
    path = snapshot_file_path(vm_dir, vm_name)
    if not os.path.isfile(path):
        return []

    try:
        lines = read_lines(path)
    except (OSError, UnicodeDecodeError) as e:
        message = f"Failed to read snapshot metadata {path}: {e}"
        logger.error(message)
        return [AuditRecord(vm_name=vm_name, key=SNAPSHOT_ERROR_KEY, value=message)]

    return parse_snapshot_lines(lines, vm_name)
