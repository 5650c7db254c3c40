"""
VMAudit Export Layer

Writes an audit collection to disk:
  - CSV: one row per record, fixed column order, every value quoted
  - Excel (.xlsx): formatted "Audit Records" sheet plus a "Summary" sheet
  - JSON: records plus run metadata for automation
"""

import csv
import datetime
import json
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from openpyxl import Workbook
from openpyxl.formatting.rule import FormulaRule
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .diagnostics import get_logger
from .exceptions import AuditError, ExportError
from .hostinfo import NOT_DETECTED
from .records import AUDIT_COLUMNS, AuditRecord, DESCRIPTOR_ERROR_KEY, SNAPSHOT_ERROR_KEY, SNAPSHOT_META_KEY


EXPORT_FORMATS = ('csv', 'xlsx', 'json')

logger = get_logger("export")


def summarize(records: Iterable[AuditRecord], host_version: str = NOT_DETECTED,
              root: str = "", collection_time: Optional[str] = None) -> Dict:
    """Build the run metadata shared by the Excel and JSON exports"""
    records = list(records)
    vm_names = []
    for record in records:
        if record.vm_name not in vm_names:
            vm_names.append(record.vm_name)

    return {
        'root': root,
        'host_version': host_version,
        'collection_time': collection_time or datetime.datetime.now().isoformat(timespec='seconds'),
        'vms_total': len(vm_names),
        'records_total': len(records),
        'descriptor_errors': sum(1 for r in records if r.key == DESCRIPTOR_ERROR_KEY),
        'snapshot_errors': sum(1 for r in records if r.key == SNAPSHOT_ERROR_KEY),
        'snapshot_records': sum(1 for r in records if r.is_snapshot),
    }


# ======== CSV OUTPUT ========

def export_csv(records: Iterable[AuditRecord], output_file: Union[str, Path]) -> str:
    """Write records to a CSV file with a header row"""
    try:
        with open(output_file, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.writer(csvfile, quoting=csv.QUOTE_ALL)
            writer.writerow(AUDIT_COLUMNS)
            writer.writerows(record.as_row() for record in records)
    except OSError as e:
        raise ExportError(output_file, e) from e
    return str(output_file)


# ======== EXCEL OUTPUT ========

def apply_excel_formatting(ws, header_row: int = 1, freeze_col: int = 1):
    """Apply standard Excel formatting to a worksheet"""
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for cell in ws[header_row]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment

    # Freeze header row + first N columns
    ws.freeze_panes = f"{get_column_letter(freeze_col + 1)}{header_row + 1}"

    if ws.max_row > header_row:
        ws.auto_filter.ref = ws.dimensions

    # Auto-size columns (min 10, max 60)
    for column in ws.columns:
        max_length = 0
        column_letter = get_column_letter(column[0].column)
        for cell in column:
            if cell.value:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[column_letter].width = min(max(max_length + 2, 10), 60)


def add_record_highlighting(ws, data_start_row: int = 2):
    """Colour error rows red and snapshot rows blue, keyed on the Key column"""
    if ws.max_row < data_start_row:
        return

    key_col = get_column_letter(AUDIT_COLUMNS.index('Key') + 1)
    last_col = get_column_letter(len(AUDIT_COLUMNS))
    cell_range = f"A{data_start_row}:{last_col}{ws.max_row}"

    error_fill = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    error_font = Font(color="9C0006")
    snapshot_fill = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")

    ws.conditional_formatting.add(
        cell_range,
        FormulaRule(
            formula=[f'OR(${key_col}{data_start_row}="{DESCRIPTOR_ERROR_KEY}",'
                     f'${key_col}{data_start_row}="{SNAPSHOT_ERROR_KEY}")'],
            fill=error_fill, font=error_font
        )
    )
    ws.conditional_formatting.add(
        cell_range,
        FormulaRule(formula=[f'${key_col}{data_start_row}="{SNAPSHOT_META_KEY}"'], fill=snapshot_fill)
    )


def generate_summary_sheet(wb, summary: Dict):
    """Generate the Summary sheet as the first worksheet"""
    ws = wb.create_sheet("Summary", 0)

    ws['A1'] = "VMAudit Summary"
    ws['A1'].font = Font(size=14, bold=True)

    rows = [
        ("Audit Root", summary['root']),
        ("Host Product Version", summary['host_version']),
        ("Collection Time", summary['collection_time']),
        ("VMs Processed", summary['vms_total']),
        ("Records", summary['records_total']),
        ("Descriptor Errors", summary['descriptor_errors']),
        ("Snapshot Metadata Errors", summary['snapshot_errors']),
        ("Snapshot Records", summary['snapshot_records']),
    ]
    for row, (label, value) in enumerate(rows, 3):
        ws[f'A{row}'] = label
        ws[f'A{row}'].font = Font(bold=True)
        ws[f'B{row}'] = value

    ws.column_dimensions['A'].width = 28
    ws.column_dimensions['B'].width = 50
    return ws


def export_xlsx(records: Iterable[AuditRecord], output_file: Union[str, Path], summary: Dict) -> str:
    """Write records and summary to an Excel workbook"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Audit Records"

    ws.append(list(AUDIT_COLUMNS))
    for record in records:
        ws.append(list(record.as_row()))

    apply_excel_formatting(ws)
    add_record_highlighting(ws)
    generate_summary_sheet(wb, summary)

    try:
        wb.save(output_file)
    except OSError as e:
        raise ExportError(output_file, e) from e
    return str(output_file)


# ======== JSON OUTPUT ========

def export_json(records: Iterable[AuditRecord], output_file: Union[str, Path], summary: Dict) -> str:
    """Write records and summary to a JSON document"""
    data = {
        'root': summary['root'],
        'host_version': summary['host_version'],
        'collection_time': summary['collection_time'],
        'statistics': {k: v for k, v in summary.items()
                       if k not in ('root', 'host_version', 'collection_time')},
        'records': [record.as_dict() for record in records],
    }

    try:
        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ExportError(output_file, e) from e
    return str(output_file)


# ======== ENTRY POINTS ========

def export_records(records: Iterable[AuditRecord], output_file: Union[str, Path], fmt: str = 'csv',
                   host_version: str = NOT_DETECTED, root: str = "",
                   collection_time: Optional[str] = None) -> str:
    """
    Export a record collection to output_file.

    Args:
        records: Audit records in output order
        output_file: Destination path
        fmt: One of csv, xlsx, json
        host_version: Host product version for the xlsx/json metadata
        root: Audited root for the xlsx/json metadata
        collection_time: ISO timestamp of the run (default: now)

    Returns:
        Path of the written file

    Raises:
        AuditError: unsupported format
        ExportError: file could not be written
    """
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise AuditError(f"Unsupported export format '{fmt}' (choose from {', '.join(EXPORT_FORMATS)})")

    records = list(records)
    directory = os.path.dirname(str(output_file))
    if directory and not os.path.isdir(directory):
        raise ExportError(output_file, f"directory {directory} does not exist")

    if fmt == 'csv':
        written = export_csv(records, output_file)
    else:
        summary = summarize(records, host_version, root, collection_time)
        if fmt == 'xlsx':
            written = export_xlsx(records, output_file, summary)
        else:
            written = export_json(records, output_file, summary)

    logger.info(f"Exported {len(records)} records to {written} ({fmt})")
    return written


def export_result(result, output_file: Union[str, Path], fmt: str = 'csv',
                  records: Optional[Iterable[AuditRecord]] = None) -> str:
    """
    Export an AuditResult, carrying its host version, root and finish time
    into the metadata.

    Args:
        result: Completed AuditResult
        output_file: Destination path
        fmt: One of EXPORT_FORMATS
        records: Subset of result.records to write (default: all of them)
    """
    if records is None:
        records = result.records
    collection_time = result.finished_at.isoformat(timespec='seconds') if result.finished_at else None
    return export_records(records, output_file, fmt,
                          host_version=result.host_version, root=result.root,
                          collection_time=collection_time)
