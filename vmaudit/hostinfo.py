"""
Installed virtualization product version lookup.

Windows hosts keep the version in the registry; Linux hosts running VMware
Workstation/Player record it as ``product.version`` in /etc/vmware/config.
A missing value is normal and yields NOT_DETECTED.
"""

import os
import sys
from typing import Optional

from .descriptor import match_descriptor_line, read_lines
from .diagnostics import get_logger


NOT_DETECTED = "Not Detected"

REGISTRY_KEYS = [
    r"SOFTWARE\WOW6432Node\VMware, Inc.\VMware Workstation",
    r"SOFTWARE\VMware, Inc.\VMware Workstation",
]
REGISTRY_VALUE = "ProductVersion"

DEFAULT_HOST_CONFIG = "/etc/vmware/config"
HOST_CONFIG_ENV = "VMAUDIT_HOST_CONFIG"
HOST_VERSION_KEY = "product.version"

logger = get_logger("hostinfo")


def get_version_from_registry() -> Optional[str]:
    """Read ProductVersion from the first VMware registry key that has one"""
    try:
        import winreg
    except ImportError:
        return None

    for subkey in REGISTRY_KEYS:
        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, subkey, 0, winreg.KEY_READ)
            try:
                value, _ = winreg.QueryValueEx(key, REGISTRY_VALUE)
            finally:
                winreg.CloseKey(key)
        except OSError:
            continue
        if value:
            return str(value).strip()
    return None


def get_version_from_config(config_path: Optional[str] = None) -> Optional[str]:
    """Read product.version from a VMware host config file"""
    path = config_path or os.environ.get(HOST_CONFIG_ENV) or DEFAULT_HOST_CONFIG
    if not os.path.isfile(path):
        return None

    try:
        lines = read_lines(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Host config {path} unreadable: {e}")
        return None

    version = None
    for line in lines:
        pair = match_descriptor_line(line)
        if pair and pair[0] == HOST_VERSION_KEY and pair[1]:
            version = pair[1]
    return version


def resolve_host_version() -> str:
    """
    Resolve the installed product version for this host.

    Returns:
        Version string, or "Not Detected" when no source provides one
    """
    if sys.platform.startswith("win"):
        version = get_version_from_registry()
    else:
        version = get_version_from_config()

    if version:
        logger.debug(f"Host product version: {version}")
        return version
    return NOT_DETECTED
