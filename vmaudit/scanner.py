"""
VMAudit Directory Scanner

Discovers VM descriptor files anywhere under a root directory. Results are
sorted by file name so audit output is deterministic regardless of the order
the OS returns directory entries in. Unreadable directories are skipped.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from .descriptor import DESCRIPTOR_EXTENSION
from .diagnostics import get_logger


logger = get_logger("scanner")


@dataclass(frozen=True)
class DescriptorFile:
    """A discovered descriptor and the names derived from it"""
    path: str
    vm_name: str
    directory: str


def _is_descriptor(file_name: str) -> bool:
    # normcase folds case on Windows only
    return os.path.normcase(file_name).endswith(os.path.normcase(DESCRIPTOR_EXTENSION))


def _sort_key(descriptor: DescriptorFile):
    return (
        os.path.normcase(os.path.basename(descriptor.path)),
        os.path.normcase(descriptor.path),
    )


def scan_descriptors(root: Union[str, Path]) -> List[DescriptorFile]:
    """
    Enumerate descriptor files under root, recursively.

    Args:
        root: Directory to scan. A missing root yields an empty list.

    Returns:
        DescriptorFile entries sorted by file name, then full path
    """
    def _walk_error(error: OSError):
        logger.debug(f"Skipping unreadable path {error.filename}: {error.strerror}")

    found = []
    for dirpath, _dirnames, filenames in os.walk(str(root), onerror=_walk_error):
        for file_name in filenames:
            if not _is_descriptor(file_name):
                continue
            found.append(DescriptorFile(
                path=os.path.join(dirpath, file_name),
                vm_name=os.path.splitext(file_name)[0],
                directory=dirpath,
            ))

    found.sort(key=_sort_key)
    return found
