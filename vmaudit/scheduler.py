"""
VMAudit Scheduler Module

Daemon mode: re-audits one root on a fixed interval and rewrites the export
after every run.

- Each run goes through the daemon's own AuditAggregator, so the export is
  always built from a fresh AuditResult
- A failed run is recorded and retried on the next interval
- SIGINT/SIGTERM stop the scheduler
"""

import shlex
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Union

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .aggregator import AuditAggregator, AuditResult
from .diagnostics import get_logger
from .hostinfo import resolve_host_version
from .records import AuditRecord


logger = get_logger("scheduler")

RecordFilter = Callable[[AuditRecord], bool]
ResultCallback = Callable[[AuditResult, int], None]


class AuditDaemon:
    """
    Scheduled audits of a single root.

    Runs never overlap. The last AuditResult stays available through
    ``aggregator.last_result`` between runs.
    """

    def __init__(self,
                 root: Union[str, Path],
                 output_file: Union[str, Path],
                 fmt: str = "csv",
                 interval_minutes: int = 60,
                 record_filter: Optional[RecordFilter] = None,
                 on_result: Optional[ResultCallback] = None,
                 version_resolver: Callable[[], str] = resolve_host_version):
        """
        Args:
            root: Directory tree to audit
            output_file: Export file rewritten after every run
            fmt: Export format (csv, xlsx, json)
            interval_minutes: Minutes between runs (default: 60)
            record_filter: Only export records it accepts (default: all)
            on_result: Called with (result, exported record count) after a
                successful export
            version_resolver: Host version lookup handed to the aggregator
        """
        self.aggregator = AuditAggregator(root, version_resolver=version_resolver)
        self.output_file = str(output_file)
        self.fmt = fmt
        self.interval_minutes = interval_minutes
        self.record_filter = record_filter
        self.on_result = on_result
        self.scheduler = BlockingScheduler()
        self.running = False
        self.run_count = 0
        self.last_run_time = None
        self.last_run_success = None
        self.last_error = None
        self.last_exported = 0

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, stopping daemon")
        self.stop()
        sys.exit(0)

    def run_once(self) -> Optional[AuditResult]:
        """
        Audit the root and rewrite the export.

        Failures are kept in last_error and logged, never raised, so the
        scheduler keeps its interval.

        Returns:
            The new AuditResult, or None if the run failed
        """
        self.run_count += 1
        self.last_run_time = datetime.now()
        logger.info(f"Audit run #{self.run_count} started for {self.aggregator.root}")

        try:
            result = self.aggregator.run()
            records = None
            if self.record_filter is not None:
                records = [r for r in result.records if self.record_filter(r)]
            written = self.aggregator.export(self.output_file, self.fmt, records=records)
            self.last_exported = len(result.records) if records is None else len(records)
            if self.on_result is not None:
                self.on_result(result, self.last_exported)
        except KeyboardInterrupt:
            raise
        except Exception as e:
            self.last_run_success = False
            self.last_error = str(e)
            logger.error(f"Audit run #{self.run_count} failed: {e}")
            return None

        self.last_run_success = True
        self.last_error = None
        next_run = self.last_run_time + timedelta(minutes=self.interval_minutes)
        logger.info(f"Audit run #{self.run_count} wrote {self.last_exported} records to {written}; "
                    f"next run at {next_run.strftime('%Y-%m-%d %H:%M:%S')}")
        return result

    def start(self):
        """
        Run immediately, then every interval_minutes until stopped.

        Blocks until a signal or KeyboardInterrupt arrives.
        """
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.running = True
        logger.info(f"Daemon started: root={self.aggregator.root} output={self.output_file} "
                    f"format={self.fmt} interval={self.interval_minutes}m")

        self.run_once()

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id='audit_job',
            name='VMAudit Collection',
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300
        )

        try:
            self.scheduler.start()
        except KeyboardInterrupt:
            self.stop()

    def start_once(self) -> int:
        """
        Run a single audit without scheduling.

        Returns:
            0 on success, 1 on failure
        """
        self.run_once()
        return 0 if self.last_run_success else 1

    def stop(self):
        """Stop the scheduler; a no-op when the daemon is not running."""
        if not self.running:
            return

        self.running = False
        logger.info(f"Daemon stopped after {self.run_count} runs "
                    f"(last run {'succeeded' if self.last_run_success else 'failed'})")

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def get_status(self) -> dict:
        """
        Current daemon state plus the counts of the last completed audit.

        Record, VM and error counts are None until a run has completed.
        """
        result = self.aggregator.last_result
        return {
            'running': self.running,
            'root': self.aggregator.root,
            'output_file': self.output_file,
            'format': self.fmt,
            'interval_minutes': self.interval_minutes,
            'run_count': self.run_count,
            'last_run_time': self.last_run_time.isoformat() if self.last_run_time else None,
            'last_run_success': self.last_run_success,
            'last_error': self.last_error,
            'records': len(result.records) if result else None,
            'exported_records': self.last_exported if result else None,
            'vms': result.vm_count if result else None,
            'errors': len(result.errors()) if result else None,
            'host_version': result.host_version if result else None,
        }


def create_systemd_service(root: str,
                           output_file: str,
                           fmt: str = "csv",
                           interval: int = 60,
                           working_dir: str = "/opt/vmaudit",
                           user: str = "vmaudit",
                           python: str = "/usr/bin/python3") -> str:
    """
    Generate a systemd unit that runs VMAudit in daemon mode.

    Paths are shell-quoted, so roots with spaces survive ExecStart parsing.

    Returns:
        Unit file content
    """
    command = [
        python, f"{working_dir}/VMAudit.py", output_file,
        "--root", root,
        "--format", fmt,
        "--daemon",
        "--interval", str(interval),
        "--quiet",
    ]
    exec_start = " ".join(shlex.quote(part) for part in command)

    return f"""[Unit]
Description=VMAudit Daemon - Scheduled VM Descriptor Audit
After=local-fs.target remote-fs.target

[Service]
Type=simple
User={user}
WorkingDirectory={working_dir}
ExecStart={exec_start}

Restart=on-failure
RestartSec=60

NoNewPrivileges=true
PrivateTmp=true
ProtectSystem=full

[Install]
WantedBy=multi-user.target
"""
