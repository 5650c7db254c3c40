#!/usr/bin/env python3
"""
Tests for daemon mode.
"""

import csv

from vmaudit.scheduler import AuditDaemon, create_systemd_service


def fixed_version():
    return "17.5.1"


def _rows(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.reader(f))


def test_single_run_writes_export_and_status(make_vm, tmp_path):
    make_vm('web01', 'virtualHW.version = "19"\nmemsize = "4096"\n',
            vmsd='snapshot.1.displayName = "base"\n')
    make_vm('db01', b'\xff\xfe\xfa\n')
    out = tmp_path / 'audit.csv'

    daemon = AuditDaemon(make_vm.root, out, interval_minutes=5, version_resolver=fixed_version)

    assert daemon.start_once() == 0
    assert len(_rows(out)) == 1 + 4

    status = daemon.get_status()
    assert status['run_count'] == 1
    assert status['last_run_success'] is True
    assert status['last_error'] is None
    assert status['output_file'] == str(out)
    assert status['vms'] == 2
    assert status['records'] == 4
    assert status['exported_records'] == 4
    assert status['errors'] == 1
    assert status['host_version'] == '17.5.1'


def test_status_before_first_run_has_no_counts(make_vm, tmp_path):
    daemon = AuditDaemon(make_vm.root, tmp_path / 'audit.csv')

    status = daemon.get_status()
    assert status['run_count'] == 0
    assert status['records'] is None
    assert status['vms'] is None
    assert status['errors'] is None


def test_each_run_rewrites_export_from_fresh_result(make_vm, tmp_path):
    make_vm('a', 'memsize = "1"\n')
    out = tmp_path / 'audit.csv'
    daemon = AuditDaemon(make_vm.root, out, version_resolver=fixed_version)

    daemon.run_once()
    first = daemon.aggregator.last_result
    make_vm('b', 'memsize = "2"\n')
    second = daemon.run_once()

    assert second is not first
    assert [row[0] for row in _rows(out)[1:]] == ['a', 'b']
    assert daemon.get_status()['vms'] == 2
    assert daemon.run_count == 2


def test_record_filter_and_callback(make_vm, tmp_path):
    make_vm('web01', 'virtualHW.version = "19"\nmemsize = "4096"\n')
    out = tmp_path / 'audit.csv'
    seen = []

    daemon = AuditDaemon(make_vm.root, out,
                         record_filter=lambda record: record.key == 'memsize',
                         on_result=lambda result, exported: seen.append((len(result.records), exported)),
                         version_resolver=fixed_version)

    assert daemon.start_once() == 0
    assert _rows(out)[1:] == [['web01', 'memsize', '4096', '19', '']]
    assert seen == [(2, 1)]
    assert daemon.get_status()['records'] == 2
    assert daemon.get_status()['exported_records'] == 1


def test_failed_export_is_recorded_not_raised(make_vm, tmp_path):
    make_vm('web01', 'memsize = "1"\n')
    out = tmp_path / 'missing-dir' / 'audit.csv'

    daemon = AuditDaemon(make_vm.root, out, version_resolver=fixed_version)

    assert daemon.start_once() == 1
    assert daemon.last_run_success is False
    assert 'missing-dir' in daemon.last_error
    # the audit itself completed before the export failed
    assert daemon.get_status()['records'] == 1


def test_failure_then_recovery(make_vm, tmp_path):
    make_vm('web01', 'memsize = "1"\n')
    out_dir = tmp_path / 'exports'
    daemon = AuditDaemon(make_vm.root, out_dir / 'audit.csv', version_resolver=fixed_version)

    assert daemon.run_once() is None
    out_dir.mkdir()
    assert daemon.run_once() is not None

    assert daemon.last_run_success is True
    assert daemon.last_error is None


def test_json_format(make_vm, tmp_path):
    import json

    make_vm('web01', 'memsize = "1"\n')
    out = tmp_path / 'audit.json'

    assert AuditDaemon(make_vm.root, out, fmt='json', version_resolver=fixed_version).start_once() == 0

    data = json.loads(out.read_text(encoding='utf-8'))
    assert data['host_version'] == '17.5.1'
    assert data['records'][0]['VMName'] == 'web01'


def test_stop_when_not_running_is_noop(make_vm, tmp_path):
    daemon = AuditDaemon(make_vm.root, tmp_path / 'audit.csv')
    daemon.stop()
    assert daemon.get_status()['running'] is False


def test_systemd_service_content():
    unit = create_systemd_service('/srv/vms', '/var/lib/vmaudit/audit.csv', fmt='xlsx', interval=15)

    assert 'ExecStart=/usr/bin/python3 /opt/vmaudit/VMAudit.py /var/lib/vmaudit/audit.csv' in unit
    assert '--root /srv/vms' in unit
    assert '--format xlsx' in unit
    assert '--interval 15' in unit
    assert 'User=vmaudit' in unit


def test_systemd_service_quotes_paths_with_spaces():
    unit = create_systemd_service('/srv/my vms', '/var/lib/vmaudit/audit.csv')

    assert "--root '/srv/my vms'" in unit
