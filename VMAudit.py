#!/usr/bin/env python3

"""
VMAudit - Virtual Machine Descriptor Inventory Tool

Scans a directory tree for VM descriptor files (.vmx) and collects:
  - Every configuration key/value pair, in file order
  - The virtual hardware version in effect at each line
  - Snapshot metadata from the sibling .vmsd file
  - The installed virtualization product version on this host

Output is one flat record set with the columns
VMName, Key, Value, VMVersion, SnapshotUID, saved as CSV (default),
an Excel workbook (.xlsx) or JSON.

USAGE:
    # Audit a datastore folder, write vmaudit_<folder>.csv
    ./VMAudit.py -r /vmfs/volumes/datastore1

    # Using environment variables - useful for automation
    export VMAUDIT_ROOT=/srv/vms
    export VMAUDIT_FORMAT=xlsx
    ./VMAudit.py

    # Explicit output file and format
    ./VMAudit.py inventory.xlsx -r /srv/vms --format xlsx

OPTIONS:
    output                 Output filename (default: vmaudit_{rootname}.{format})
    -r, --root PATH        Directory tree to scan for .vmx files
    --format {csv,xlsx,json}
                           Output format (default: csv)
    -q, --quiet            Run in quiet mode (less verbose output)
    --log-file FILE        Diagnostic log file (default: ~/.local/share/vmaudit/vmaudit.log)
    --summary-only         Show audit summary only (no file generation)
    --errors               Show only error records (exit 0 if none, 1 if found)
    --filter-vm NAME       Only export VMs whose name contains NAME (case-insensitive)
    --filter-key KEY       Only export records whose key contains KEY (case-insensitive)
    --daemon               Re-run the audit on a schedule, rewriting the output each time
    --interval MINUTES     Daemon interval in minutes (default: 60)
    --systemd-unit         Print a systemd unit for daemon mode and exit
    -v, --version          Show version and exit
    -h, --help             Show help message and exit

ENVIRONMENT:
    VMAUDIT_ROOT           Default for --root
    VMAUDIT_FORMAT         Default for --format
    VMAUDIT_LOG_FILE       Default for --log-file
    VMAUDIT_HOST_CONFIG    Host config file holding product.version (non-Windows)

EXAMPLES:
    # Check for unreadable descriptors only (useful for monitoring scripts)
    ./VMAudit.py -r /srv/vms --errors

    # Hardware versions of every VM as JSON
    ./VMAudit.py hw.json -r /srv/vms --format json --filter-key virtualHW

    # Hourly audit into an Excel workbook
    ./VMAudit.py /var/lib/vmaudit/audit.xlsx -r /srv/vms --format xlsx --daemon

CHANGELOG:
    v1.2 - Daemon mode, record filters, systemd unit generation
    v1.1 - Excel and JSON export, summary dashboard
    v1.0 - Initial release: descriptor and snapshot metadata audit to CSV
"""

import argparse
import os
import sys
import time
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from vmaudit import __version__
from vmaudit.aggregator import AuditAggregator, AuditResult
from vmaudit.diagnostics import current_log_file, setup_logger
from vmaudit.exceptions import InternalException
from vmaudit.export import EXPORT_FORMATS
from vmaudit.records import AuditRecord, DESCRIPTOR_ERROR_KEY, SNAPSHOT_ERROR_KEY
from vmaudit.descriptor import HARDWARE_VERSION_KEY


# ======== GLOBAL VARIABLES ========
VERSION = __version__
DEFAULT_FORMAT = 'csv'
DEFAULT_INTERVAL = 60

# ANSI color codes
COLOR_RESET = "\033[0m"
COLOR_BOLD = "\033[1m"
COLOR_YELLOW = "\033[33m"
COLOR_BLUE = "\033[34m"
COLOR_GREEN = "\033[32m"
COLOR_CYAN = "\033[36m"
COLOR_RED = "\033[31m"

BOX_WIDTH = 70


# ======== HELPER FUNCTIONS ========

def draw_line(width: int = BOX_WIDTH):
    """Draw a horizontal line"""
    print("-" * width)


def log_info(message: str, quiet: bool = False):
    """Log informational message"""
    if not quiet:
        print(message)


def sanitize_filename(name: str) -> str:
    """Sanitize root folder name for use in filename"""
    import re
    sanitized = re.sub(r'[^\w\-.]', '_', name)
    sanitized = re.sub(r'_+', '_', sanitized)
    sanitized = sanitized.strip('_').lower()
    return sanitized if sanitized else 'root'


def default_output_file(root: str, fmt: str) -> str:
    """vmaudit_{rootname}.{format}"""
    root_name = os.path.basename(os.path.normpath(os.path.abspath(root)))
    return f"vmaudit_{sanitize_filename(root_name)}.{fmt}"


def format_time(seconds: float) -> str:
    """Format seconds to human readable time"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        mins = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds / 3600)
        mins = int((seconds % 3600) / 60)
        return f"{hours}h {mins}m"


def get_settings_from_env() -> Dict[str, Optional[str]]:
    """
    Read defaults from environment variables.

    Returns:
        Dict with root, format and log_file (None when unset)
    """
    return {
        'root': os.environ.get('VMAUDIT_ROOT') or None,
        'format': os.environ.get('VMAUDIT_FORMAT') or None,
        'log_file': os.environ.get('VMAUDIT_LOG_FILE') or None,
    }


def record_matches_filter(record: AuditRecord, args) -> bool:
    """Check a record against the --filter-* options"""
    if args.filter_vm and args.filter_vm.lower() not in record.vm_name.lower():
        return False
    if args.filter_key and args.filter_key.lower() not in record.key.lower():
        return False
    return True


def show_progress(current: int, total: int, vm_name: str = "", quiet: bool = False, stats: 'AuditStatistics' = None):
    """Show progress bar with speed"""
    if quiet:
        return

    width = BOX_WIDTH - 20
    percent = int(current * 100 / total) if total > 0 else 0
    completed = int(width * current / total) if total > 0 else 0
    bar = ("#" * completed).ljust(width)

    speed_str = ""
    if stats and current > 0:
        vms_per_sec = current / max(stats.get_elapsed_time(), 1e-6)
        speed_str = f" {COLOR_GREEN}[{vms_per_sec:.1f} VMs/s]{COLOR_RESET}"

    vm_display = f" {COLOR_CYAN}{vm_name[:30]}{COLOR_RESET}" if vm_name else ""

    print(f"\r{COLOR_BLUE}[{bar}]{COLOR_RESET} {COLOR_YELLOW}{percent:3d}%{COLOR_RESET} ({current}/{total}){speed_str}{vm_display}", end='', flush=True)
    if current == total:
        print()


# ======== STATISTICS TRACKING ========

class AuditStatistics:
    """Track statistics for one audit run"""
    def __init__(self):
        self.total_vms = 0
        self.total_records = 0
        self.exported_records = 0
        self.descriptor_errors = 0
        self.snapshot_errors = 0
        self.snapshot_records = 0
        self.vms_with_snapshots = 0
        self.vms_without_hw_version = 0
        self.hw_versions = {}
        self.start_time = time.time()
        self.end_time = None

        self.warnings = []
        self.categorized_warnings = {
            'CRITICAL': [],  # Descriptor could not be read
            'WARNING': [],   # Snapshot metadata could not be read
            'INFO': []       # Informational notices
        }

    def add_warning(self, warning: str, severity: str = 'WARNING'):
        """Add a categorized warning"""
        if warning not in self.warnings:
            self.warnings.append(warning)
        if severity in self.categorized_warnings:
            if warning not in self.categorized_warnings[severity]:
                self.categorized_warnings[severity].append(warning)

    def add_vm(self, vm_name: str, records: List[AuditRecord]):
        """Add one VM's records to the statistics"""
        self.total_vms += 1
        self.total_records += len(records)

        hw_version = ""
        snapshots = 0
        for record in records:
            if record.key == DESCRIPTOR_ERROR_KEY:
                self.descriptor_errors += 1
                self.add_warning(f"{vm_name}: descriptor unreadable", 'CRITICAL')
            elif record.key == SNAPSHOT_ERROR_KEY:
                self.snapshot_errors += 1
                self.add_warning(f"{vm_name}: snapshot metadata unreadable", 'WARNING')
            elif record.is_snapshot:
                snapshots += 1
            elif record.key == HARDWARE_VERSION_KEY:
                hw_version = record.value

        self.snapshot_records += snapshots
        if snapshots:
            self.vms_with_snapshots += 1

        if hw_version:
            self.hw_versions[hw_version] = self.hw_versions.get(hw_version, 0) + 1
        elif not any(r.key == DESCRIPTOR_ERROR_KEY for r in records):
            self.vms_without_hw_version += 1
            self.add_warning(f"{vm_name}: no {HARDWARE_VERSION_KEY} set", 'INFO')

    def collect(self, result: AuditResult):
        """Fill statistics from a finished audit result"""
        by_vm = OrderedDict((name, []) for name in result.vm_names)
        for record in result.records:
            by_vm.setdefault(record.vm_name, []).append(record)
        for vm_name, records in by_vm.items():
            self.add_vm(vm_name, records)
        self.end_time = time.time()

    def get_error_count(self) -> int:
        return self.descriptor_errors + self.snapshot_errors

    def get_elapsed_time(self) -> float:
        """Get elapsed time in seconds"""
        return (self.end_time or time.time()) - self.start_time

    def get_vms_per_second(self) -> float:
        """Calculate VMs processed per second"""
        elapsed = self.get_elapsed_time()
        if elapsed > 0:
            return self.total_vms / elapsed
        return 0


# ======== DISPLAY FUNCTIONS ========

def display_audit_header(root: str, host_version: str, quiet: bool = False):
    """Display audit target and host information"""
    if quiet:
        return

    print()
    print(f"  {COLOR_BOLD}VMAudit v{VERSION}{COLOR_RESET}")
    draw_line()
    print(f"  Audit Root:       {COLOR_YELLOW}{root}{COLOR_RESET}")
    print(f"  Host Version:     {COLOR_YELLOW}{host_version}{COLOR_RESET}")
    print(f"  Diagnostic Log:   {COLOR_YELLOW}{current_log_file() or 'Not configured'}{COLOR_RESET}")
    draw_line()
    print()


def display_summary_report(stats: AuditStatistics, output_file: Optional[str], quiet: bool = False):
    """Display final summary report with warnings"""
    if quiet:
        print(f"\nAudit completed: {stats.total_vms} VMs, {stats.total_records} records in "
              f"{format_time(stats.get_elapsed_time())} - Output: {output_file or 'none'}")
        if stats.warnings:
            print(f"Warnings: {len(stats.warnings)}")
        return

    box_width = 67

    def format_line(content: str) -> str:
        """Format a line with proper padding to fit in box"""
        import re
        clean = re.sub(r'\x1b\[[0-9;]*m', '', content)
        padding_needed = box_width - len(clean)
        if padding_needed > 0:
            content += ' ' * padding_needed
        return f"  {COLOR_BOLD}║{COLOR_RESET}{content}{COLOR_BOLD}║{COLOR_RESET}"

    print()
    print(f"  {COLOR_BOLD}╔{'═' * box_width}╗{COLOR_RESET}")
    print(format_line(f"{'AUDIT SUMMARY':^{box_width}}"))
    print(f"  {COLOR_BOLD}╠{'═' * box_width}╣{COLOR_RESET}")

    print(format_line(f" VMs Processed:      {COLOR_YELLOW}{stats.total_vms:>7}{COLOR_RESET}"))
    print(format_line(f" Records Collected:  {COLOR_YELLOW}{stats.total_records:>7}{COLOR_RESET}"))
    print(format_line(f" Records Exported:   {COLOR_YELLOW}{stats.exported_records:>7}{COLOR_RESET}"))
    print(format_line(" "))

    error_color = COLOR_GREEN if stats.get_error_count() == 0 else COLOR_RED
    print(format_line(f" Descriptor Errors:  {error_color}{stats.descriptor_errors:>7}{COLOR_RESET}"))
    print(format_line(f" Snapshot Errors:    {error_color}{stats.snapshot_errors:>7}{COLOR_RESET}"))
    print(format_line(" "))

    snap_pct = (stats.vms_with_snapshots / stats.total_vms * 100) if stats.total_vms > 0 else 0
    print(format_line(f" VMs with Snapshots: {COLOR_CYAN}{stats.vms_with_snapshots:>7}{COLOR_RESET} ({snap_pct:>5.1f}%)"))
    print(format_line(f" Snapshot Records:   {COLOR_CYAN}{stats.snapshot_records:>7}{COLOR_RESET}"))
    for hw_version, count in sorted(stats.hw_versions.items(), key=lambda item: item[0]):
        print(format_line(f"   HW version {hw_version:<6} {COLOR_CYAN}{count:>7}{COLOR_RESET}"))
    print(format_line(" "))

    print(format_line(f" Execution Time:     {COLOR_CYAN}{format_time(stats.get_elapsed_time()):>10}{COLOR_RESET}"))
    print(format_line(f" Processing Speed:   {COLOR_CYAN}{stats.get_vms_per_second():>7.1f} VMs/s{COLOR_RESET}"))
    print(format_line(" "))

    output_display = (output_file or 'none (summary only)')[:44]
    print(format_line(f" Output File:        {COLOR_YELLOW}{output_display}{COLOR_RESET}"))

    if stats.warnings:
        print(format_line(" "))
        print(format_line(f" {COLOR_RED}⚠  WARNINGS:{COLOR_RESET}"))
        for warning in stats.warnings[:5]:
            print(format_line(f"   {COLOR_RED}•{COLOR_RESET} {warning[:57]}"))
        if len(stats.warnings) > 5:
            remaining = len(stats.warnings) - 5
            print(format_line(f"   {COLOR_RED}•{COLOR_RESET} ... and {remaining} more warning(s)"))
    else:
        print(format_line(f" {COLOR_GREEN}✓ No warnings detected{COLOR_RESET}"))

    print(f"  {COLOR_BOLD}╚{'═' * box_width}╝{COLOR_RESET}")
    print()
    draw_line()


def display_error_records(result: AuditResult) -> int:
    """Print error records; return 1 if any were found"""
    errors = result.errors()
    if not errors:
        print(f"{COLOR_GREEN}✓ No errors detected{COLOR_RESET}")
        return 0

    print(f"\n{COLOR_RED}{COLOR_BOLD}⚠  ERRORS DETECTED:{COLOR_RESET}")
    for idx, record in enumerate(errors, 1):
        print(f"  {COLOR_RED}{idx}.{COLOR_RESET} [{record.vm_name}] {record.key}: {record.value}")
    print(f"\n{COLOR_YELLOW}Total errors: {len(errors)}{COLOR_RESET}\n")
    return 1


# ======== AUDIT EXECUTION ========

def run_and_export(root: str, output_file: Optional[str], fmt: str, args,
                   quiet: bool = False) -> Tuple[AuditResult, AuditStatistics]:
    """
    Run one audit and export the (filtered) records.

    Args:
        root: Directory tree to audit
        output_file: Export destination, or None to skip the export
        fmt: Export format
        args: Parsed arguments (filters)
        quiet: Suppress progress output

    Returns:
        (AuditResult, AuditStatistics)
    """
    stats = AuditStatistics()
    aggregator = AuditAggregator(root)

    log_info(f"{COLOR_CYAN}Scanning {root} for VM descriptors...{COLOR_RESET}", quiet)
    result = aggregator.run(
        progress=lambda current, total, vm_name: show_progress(current, total, vm_name, quiet, stats)
    )
    stats.collect(result)

    if output_file:
        records = [r for r in result.records if record_matches_filter(r, args)]
        aggregator.export(output_file, fmt, records=records)
        stats.exported_records = len(records)
        log_info(f"{COLOR_GREEN}✓ {len(records)} records written to: {output_file}{COLOR_RESET}", quiet)

    return result, stats


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description='VMAudit - Virtual Machine Descriptor Inventory Tool',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('output', nargs='?', default=None,
                        help='Output filename (default: vmaudit_{rootname}.{format})')
    parser.add_argument('-r', '--root', type=str, metavar='PATH',
                        help='Directory tree to scan for .vmx files (env: VMAUDIT_ROOT)')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Run in quiet mode (less verbose output)')
    parser.add_argument('-v', '--version', action='version',
                        version=f'VMAudit v{VERSION}')
    parser.add_argument('--format', type=str, choices=list(EXPORT_FORMATS), default=None,
                        help='Output format: csv, xlsx or json (default: csv, env: VMAUDIT_FORMAT)')
    parser.add_argument('--log-file', type=str, metavar='FILE',
                        help='Diagnostic log file (env: VMAUDIT_LOG_FILE)')
    parser.add_argument('--summary-only', action='store_true',
                        help='Show audit summary only (no file generation)')
    parser.add_argument('--errors', action='store_true',
                        help='Show only error records (exit 0 if none, 1 if found)')

    filter_group = parser.add_argument_group('Filtering Options')
    filter_group.add_argument('--filter-vm', type=str, metavar='NAME',
                              help='Only export VMs whose name contains NAME (case-insensitive)')
    filter_group.add_argument('--filter-key', type=str, metavar='KEY',
                              help='Only export records whose key contains KEY (case-insensitive)')

    daemon_group = parser.add_argument_group('Daemon Mode Options')
    daemon_group.add_argument('--daemon', action='store_true',
                              help='Re-run the audit on a schedule, rewriting the output file each time')
    daemon_group.add_argument('--interval', type=int, default=DEFAULT_INTERVAL, metavar='MINUTES',
                              help=f'Audit interval in minutes for daemon mode (default: {DEFAULT_INTERVAL})')
    daemon_group.add_argument('--systemd-unit', action='store_true',
                              help='Print a systemd service unit for daemon mode and exit')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main program"""
    args = parse_arguments(argv)
    env = get_settings_from_env()
    quiet = args.quiet

    root = args.root or env['root']
    fmt = (args.format or env['format'] or DEFAULT_FORMAT).lower()

    if not root:
        print(f"{COLOR_RED}Error: no audit root given{COLOR_RESET}", file=sys.stderr)
        print(f"{COLOR_YELLOW}Use --root PATH or set VMAUDIT_ROOT{COLOR_RESET}", file=sys.stderr)
        return 1

    if fmt not in EXPORT_FORMATS:
        print(f"{COLOR_RED}Error: unsupported format '{fmt}' (choose from {', '.join(EXPORT_FORMATS)}){COLOR_RESET}",
              file=sys.stderr)
        return 1

    # The engine never validates the root itself
    if not os.path.isdir(root):
        print(f"{COLOR_RED}Error: audit root not found or not a directory: {root}{COLOR_RESET}", file=sys.stderr)
        return 1

    if args.interval < 1:
        print(f"{COLOR_RED}Error: --interval must be at least 1 minute{COLOR_RESET}", file=sys.stderr)
        return 1

    output_file = args.output or default_output_file(root, fmt)

    if args.systemd_unit:
        from vmaudit.scheduler import create_systemd_service
        print(create_systemd_service(os.path.abspath(root), os.path.abspath(output_file), fmt, args.interval))
        return 0

    setup_logger(args.log_file or env['log_file'])

    # ===== DAEMON MODE ENTRY POINT =====
    if args.daemon:
        from vmaudit.scheduler import AuditDaemon

        def report(result: AuditResult, exported: int):
            stats = AuditStatistics()
            stats.start_time = result.started_at.timestamp()
            stats.collect(result)
            stats.exported_records = exported
            display_summary_report(stats, output_file, quiet)

        log_info(f"{COLOR_CYAN}Daemon mode: auditing {root} every {args.interval} minutes "
                 f"(Ctrl+C to stop){COLOR_RESET}", quiet)
        daemon = AuditDaemon(root, output_file, fmt,
                             interval_minutes=args.interval,
                             record_filter=lambda record: record_matches_filter(record, args),
                             on_result=report)
        daemon.start()
        return 0

    # ===== SINGLE RUN =====
    summary_only = args.summary_only
    errors_only = args.errors
    export_to = None if (summary_only or errors_only) else output_file

    try:
        result, stats = run_and_export(root, export_to, fmt, args, quiet=quiet or errors_only)
    except InternalException as e:
        print(f"\n{COLOR_RED}Error: {e}{COLOR_RESET}", file=sys.stderr)
        return 1

    if errors_only:
        return display_error_records(result)

    display_audit_header(result.root, result.host_version, quiet)
    display_summary_report(stats, export_to, quiet)
    return 0


if __name__ == '__main__':
    sys.exit(main())
