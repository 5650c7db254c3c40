#!/usr/bin/env python3
"""
Tests for the host product version lookup.
"""

from vmaudit import hostinfo
from vmaudit.hostinfo import NOT_DETECTED, get_version_from_config, resolve_host_version


def test_version_from_config_file(tmp_path):
    config = tmp_path / 'config'
    config.write_text(
        'libdir = "/usr/lib/vmware"\n'
        'product.name = "VMware Workstation"\n'
        'product.version = "17.5.1"\n',
        encoding='utf-8'
    )

    assert get_version_from_config(str(config)) == '17.5.1'


def test_missing_config_file(tmp_path):
    assert get_version_from_config(str(tmp_path / 'nope')) is None


def test_config_without_version(tmp_path):
    config = tmp_path / 'config'
    config.write_text('libdir = "/usr/lib/vmware"\n', encoding='utf-8')

    assert get_version_from_config(str(config)) is None


def test_resolve_uses_environment_override(tmp_path, monkeypatch):
    config = tmp_path / 'config'
    config.write_text('product.version = "16.2.4"\n', encoding='utf-8')
    monkeypatch.setattr(hostinfo.sys, 'platform', 'linux')
    monkeypatch.setenv('VMAUDIT_HOST_CONFIG', str(config))

    assert resolve_host_version() == '16.2.4'


def test_resolve_falls_back_to_sentinel(monkeypatch):
    monkeypatch.setattr(hostinfo.sys, 'platform', 'linux')

    assert resolve_host_version() == NOT_DETECTED


def test_windows_without_registry_value(monkeypatch):
    monkeypatch.setattr(hostinfo.sys, 'platform', 'win32')
    monkeypatch.setattr(hostinfo, 'get_version_from_registry', lambda: None)

    assert resolve_host_version() == NOT_DETECTED


def test_config_with_byte_order_mark(tmp_path):
    config = tmp_path / 'config'
    config.write_bytes('product.version = "17.6.0"\n'.encode('utf-8-sig'))

    assert get_version_from_config(str(config)) == '17.6.0'
