"""
Shared pytest fixtures for the VMAudit tests.
"""

import logging
import os

import pytest

from vmaudit.diagnostics import get_logger


@pytest.fixture(autouse=True)
def reset_vmaudit_logger():
    """Drop file handlers attached by setup_logger between tests"""
    yield
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Keep host settings out of the tests"""
    for name in ('VMAUDIT_ROOT', 'VMAUDIT_FORMAT', 'VMAUDIT_LOG_FILE'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('VMAUDIT_HOST_CONFIG', str(tmp_path / 'no-such-host-config'))


@pytest.fixture
def make_vm(tmp_path):
    """
    Create a VM folder under tmp_path/vms.

    Usage: make_vm("web01", 'virtualHW.version = "19"', vmsd='...', subdir="cluster/a")
    Text is written as UTF-8; pass bytes to write raw content.
    """
    root = tmp_path / 'vms'
    root.mkdir(exist_ok=True)

    def _write(path, content):
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding='utf-8')

    def _make(name, vmx, vmsd=None, subdir=None):
        vm_dir = root / (subdir or name)
        os.makedirs(vm_dir, exist_ok=True)
        _write(vm_dir / f'{name}.vmx', vmx)
        if vmsd is not None:
            _write(vm_dir / f'{name}.vmsd', vmsd)
        return vm_dir

    _make.root = root
    return _make
