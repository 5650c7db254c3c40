"""
VMAudit Descriptor Parser

Parses one VM descriptor (.vmx) file into ordered audit records.

Every line of the form ``key = "value"`` (quotes optional, a leading ``#``
tolerated) produces one record, duplicates included. A per-file key/value map
is updated alongside the output and is only consulted for the current
``virtualHW.version``, which is attached to each record as it is emitted.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .diagnostics import get_logger
from .records import AuditRecord, DESCRIPTOR_ERROR_KEY


DESCRIPTOR_EXTENSION = ".vmx"
HARDWARE_VERSION_KEY = "virtualHW.version"
DESCRIPTOR_ENCODING = "utf-8-sig"

# group 1: key (no '=' or whitespace), group 2: value with one optional quote stripped per side
DESCRIPTOR_LINE_RE = re.compile(r'^\s*#?\s*([^=\s]+)\s*=\s*"?(.*?)"?\s*$')

logger = get_logger("descriptor")


def match_descriptor_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Apply the key/value extraction rule to a single line.

    Args:
        line: Raw text line (trailing newline allowed)

    Returns:
        (key, value) with surrounding whitespace trimmed, or None when the
        line is not an assignment
    """
    match = DESCRIPTOR_LINE_RE.match(line.rstrip("\r\n"))
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def read_lines(path: Union[str, Path], encoding: str = DESCRIPTOR_ENCODING) -> List[str]:
    """Read a text file fully and release the handle before returning."""
    with open(path, "r", encoding=encoding) as fh:
        return fh.read().splitlines()


def parse_descriptor_lines(lines, vm_name: str) -> List[AuditRecord]:
    """
    Turn descriptor lines into audit records.

    Args:
        lines: Iterable of text lines from one descriptor file
        vm_name: VM name attached to every record

    Returns:
        One record per matching line, in line order
    """
    records: List[AuditRecord] = []
    settings: Dict[str, str] = {}

    for line in lines:
        pair = match_descriptor_line(line)
        if pair is None:
            continue

        key, value = pair
        settings[key] = value

        records.append(AuditRecord(
            vm_name=vm_name,
            key=key,
            value=value,
            vm_version=settings.get(HARDWARE_VERSION_KEY, ""),
        ))

    return records


def parse_descriptor(path: Union[str, Path], vm_name: str) -> List[AuditRecord]:
    """
    Parse one descriptor file.

    A file that cannot be opened or decoded yields a single ``Error`` record
    and a diagnostic log entry instead of raising.

    Args:
        path: Path to the .vmx file
        vm_name: VM name attached to every record

    Returns:
        Ordered list of AuditRecord
    """
    try:
        lines = read_lines(path)
    except (OSError, UnicodeDecodeError) as e:
        message = f"Failed to read descriptor {path}: {e}"
        logger.error(message)
        return [AuditRecord(vm_name=vm_name, key=DESCRIPTOR_ERROR_KEY, value=message)]

    return parse_descriptor_lines(lines, vm_name)
