#!/usr/bin/env python3
"""
Tests for the .vmsd snapshot metadata parser.
"""

from vmaudit.records import SNAPSHOT_ERROR_KEY, SNAPSHOT_META_KEY
from vmaudit.snapshots import (
    SNAPSHOT_MATCHERS,
    match_display_name,
    match_snapshot_id,
    match_snapshot_line,
    parse_snapshot_metadata,
)


def test_display_name_line(tmp_path):
    (tmp_path / 'db01.vmsd').write_text('snapshot.3.displayName = "Before upgrade"\n', encoding='utf-8')

    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert len(records) == 1
    record = records[0]
    assert record.vm_name == 'db01'
    assert record.key == SNAPSHOT_META_KEY
    assert record.value == 'Before upgrade'
    assert record.snapshot_uid == '3'
    assert record.vm_version == ''


def test_other_snapshot_keys_fall_back_to_raw_line(tmp_path):
    (tmp_path / 'db01.vmsd').write_text(
        '  snapshot.mru0.uid = "3"  \n'
        'snapshot.3.displayName = "nightly"\n',
        encoding='utf-8'
    )

    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert [(r.snapshot_uid, r.value) for r in records] == [
        ('mru0', 'snapshot.mru0.uid = "3"'),
        ('3', 'nightly'),
    ]


def test_lines_without_marker_are_dropped(tmp_path):
    (tmp_path / 'db01.vmsd').write_text(
        '.encoding = "UTF-8"\n'
        'snapshot0.uid = "1"\n'
        'snapshot.1.displayName = "kept"\n',
        encoding='utf-8'
    )

    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert [r.value for r in records] == ['kept']


def test_missing_metadata_file_is_not_an_error(tmp_path):
    assert parse_snapshot_metadata(tmp_path, 'nosnaps') == []


def test_unreadable_metadata_file_yields_error_record(tmp_path):
    (tmp_path / 'db01.vmsd').write_bytes(b'snapshot.1.displayName = "\xff\xfe"\n')

    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert len(records) == 1
    assert records[0].key == SNAPSHOT_ERROR_KEY
    assert 'db01.vmsd' in records[0].value
    assert records[0].snapshot_uid == ''


def test_matchers_are_tried_in_order():
    assert SNAPSHOT_MATCHERS == [match_display_name, match_snapshot_id]
    line = 'snapshot.7.displayName = "first" # snapshot.8'
    assert match_snapshot_line(line) == ('7', 'first')


def test_matchers_are_pure_functions():
    assert match_display_name('snapshot.numSnapshots = "1"') is None
    assert match_snapshot_id('no marker here') is None
    assert match_display_name('snapshot.2.displayName = "a" "b"') == ('2', 'a')


def test_unmatched_line_gets_empty_uid():
    assert match_snapshot_line('  stray text  ') == ('', 'stray text')


def test_byte_order_mark_is_ignored(tmp_path):
    (tmp_path / 'db01.vmsd').write_bytes(
        'snapshot.lastUID = "2"\nsnapshot0.uid = "1"\nsnapshot.1.displayName = "base"\n'.encode('utf-8-sig')
    )

    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert [(r.snapshot_uid, r.value) for r in records] == [
        ('lastUID = "2"', 'snapshot.lastUID = "2"'),
        ('1', 'base'),
    ]
    assert not records[0].value.startswith('\ufeff')


def test_permission_denied_on_existing_file_yields_error_record(tmp_path, monkeypatch):
    (tmp_path / 'db01.vmsd').write_text('snapshot.1.displayName = "base"\n', encoding='utf-8')

    def denied(path, encoding=None):
        raise PermissionError(13, 'Permission denied', str(path))

    monkeypatch.setattr('vmaudit.snapshots.read_lines', denied)
    records = parse_snapshot_metadata(tmp_path, 'db01')

    assert len(records) == 1
    assert records[0].key == SNAPSHOT_ERROR_KEY
    assert 'Permission denied' in records[0].value
