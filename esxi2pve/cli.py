# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/cli.py
"""
Command line front-end over MigrationService.

    esxi2pve -c esxi2pve.yaml discover esx01
    esxi2pve -c esxi2pve.yaml migrate esx01 web01 db01 --cluster pve-a --node pve1 --storage local-lvm --wait
    esxi2pve -c esxi2pve.yaml distribute pve-a debian-12.iso --to pve-b pve-c --wait
    esxi2pve -c esxi2pve.yaml status migration-20260101-120000-a1b2c3
    esxi2pve -c esxi2pve.yaml cancel migration-20260101-120000-a1b2c3
    esxi2pve -c esxi2pve.yaml jobs --kind migration
    esxi2pve -c esxi2pve.yaml install-import-tools pve-a
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .core.config import load_config
from .core.logger import Log, c
from .service import MigrationService

# Exit codes for service responses that carry no error code of their own.
_STATUS_EXIT = {400: 2, 404: 4, 500: 1, 502: 3}

_STATUS_STYLE = {
    "pending": "dim",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "success": "green",
    "skipped": "yellow",
}


class HelpFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    pass


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="esxi2pve",
        description=c("esxi2pve: ESXi -> Proxmox VE migration jobs", "green", ["bold"]),
        formatter_class=HelpFormatter,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-c", "--config", type=Path, help="YAML config file")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vvv for TRACE)")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less logging")
    p.add_argument("--log-file", help="Also write logs to this file")
    p.add_argument("--json-logs", action="store_true", help="Emit logs as NDJSON")
    p.add_argument("--json", action="store_true", help="Print results as JSON")
    p.add_argument("--database", help="Override the state database path")
    p.add_argument("--scratch-dir", help="Override the scratch directory")

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    d = sub.add_parser("discover", help="Refresh the VM inventory of an ESXi host", formatter_class=HelpFormatter)
    d.add_argument("host", help="ESXi host id from the config")
    d.add_argument("--cached", action="store_true", help="Show the stored snapshot instead of refreshing")

    m = sub.add_parser("migrate", help="Migrate VMs from an ESXi host to a Proxmox node", formatter_class=HelpFormatter)
    m.add_argument("host", help="ESXi host id from the config")
    m.add_argument("vms", nargs="+", metavar="VM", help="VM names to migrate")
    m.add_argument("--cluster", required=True, help="Target cluster id")
    m.add_argument("--node", help="Target node (defaults to the cluster's default_node)")
    m.add_argument("--storage", required=True, help="Target Proxmox storage for the disks")
    m.add_argument("--bridge", default="vmbr0", help="Bridge for the VM NICs")
    m.add_argument(
        "--strategy",
        choices=["auto", "full_pipeline", "native_fast_path"],
        default="auto",
        help="Migration strategy",
    )
    m.add_argument("--start", action="store_true", help="Start each VM after import")
    m.add_argument("--wait", action="store_true", help="Follow the job until it finishes")

    x = sub.add_parser("distribute", help="Copy an ISO image to other clusters", formatter_class=HelpFormatter)
    x.add_argument("cluster", help="Source cluster id")
    x.add_argument("image", help="Image file name in the source ISO directory (or absolute path)")
    x.add_argument("--to", dest="targets", nargs="+", required=True, metavar="CLUSTER", help="Target cluster ids")
    x.add_argument("--storage", help="Storage id used in the produced volume ids")
    x.add_argument("--wait", action="store_true", help="Follow the job until it finishes")

    s = sub.add_parser("status", help="Show a job", formatter_class=HelpFormatter)
    s.add_argument("job_id")
    s.add_argument("--wait", action="store_true", help="Follow the job until it finishes")

    k = sub.add_parser("cancel", help="Cancel a pending or running job", formatter_class=HelpFormatter)
    k.add_argument("job_id")

    j = sub.add_parser("jobs", help="List recent jobs", formatter_class=HelpFormatter)
    j.add_argument("--kind", choices=["migration", "distribution"])
    j.add_argument("--limit", type=int, default=20)

    t = sub.add_parser(
        "install-import-tools",
        help="Install pve-esxi-import-tools on a cluster for native imports",
        formatter_class=HelpFormatter,
    )
    t.add_argument("cluster", help="Cluster id")

    return p


# ---------------------------------------------------------------------------
# rendering
# ---------------------------------------------------------------------------


def _styled(status: Optional[str]) -> str:
    s = status or "-"
    style = _STATUS_STYLE.get(s)
    return f"[{style}]{s}[/{style}]" if style else s


def vms_table(vms: Sequence[Dict[str, Any]]) -> Table:
    t = Table(title="Discovered VMs")
    t.add_column("Name", style="bold")
    t.add_column("Power")
    t.add_column("vCPU", justify="right")
    t.add_column("Memory MB", justify="right")
    t.add_column("Disk GB", justify="right")
    t.add_column("Guest OS")
    t.add_column("NICs")
    for vm in vms:
        nics = ", ".join(
            f"{n.get('network') or '?'}{'/' + n['ip_address'] if n.get('ip_address') else ''}"
            for n in vm.get("network_adapters") or []
        )
        t.add_row(
            str(vm.get("name")),
            str(vm.get("power_state")),
            str(vm.get("cpu_cores")),
            str(vm.get("memory_mb")),
            f"{float(vm.get('disk_gb') or 0):.2f}",
            str(vm.get("guest_os") or ""),
            nics,
        )
    return t


def job_table(job: Dict[str, Any]) -> Table:
    t = Table(title=f"{job.get('kind')} job {job.get('id')}: {job.get('status')} ({job.get('progress')}%)")
    t.add_column("Target", style="bold")
    t.add_column("Status")
    t.add_column("Stage")
    t.add_column("Message")
    t.add_column("Produced")
    for target in job.get("targets") or []:
        t.add_row(
            str(target.get("target_id")),
            _styled(target.get("status")),
            str(target.get("stage") or ""),
            str(target.get("message") or ""),
            str(target.get("produced_resource_id") or ""),
        )
    return t


def jobs_table(jobs: Sequence[Dict[str, Any]]) -> Table:
    t = Table(title="Jobs")
    t.add_column("Id", style="bold")
    t.add_column("Kind")
    t.add_column("Status")
    t.add_column("Progress", justify="right")
    t.add_column("Targets", justify="right")
    t.add_column("Created")
    for job in jobs:
        t.add_row(
            str(job.get("id")),
            str(job.get("kind")),
            _styled(job.get("status")),
            f"{job.get('progress', 0)}%",
            str(len(job.get("targets") or [])),
            str(job.get("created_at") or ""),
        )
    return t


# ---------------------------------------------------------------------------
# commands
# ---------------------------------------------------------------------------


class Cli:
    TERMINAL = ("completed", "failed", "cancelled")

    def __init__(self, logger: logging.Logger, service: MigrationService, args: argparse.Namespace, console: Optional[Console] = None):
        self.logger = logger
        self.service = service
        self.args = args
        self.console = console or Console()

    def _emit(self, body: Any, renderable: Any = None) -> None:
        if self.args.json or renderable is None:
            self.console.print_json(json.dumps(body, default=str))
        else:
            self.console.print(renderable)

    def _error(self, status: int, body: Any) -> int:
        err = (body or {}).get("error") or {}
        msg = err.get("message") or f"HTTP {status}"
        if self.args.json:
            self.console.print_json(json.dumps(body, default=str))
        else:
            Log.fail(self.logger, f"{err.get('type', 'Error')}: {msg}")
        code = err.get("code")
        if isinstance(code, int) and code > 1:
            return code
        return _STATUS_EXIT.get(status, 1)

    def _job_exit(self, job: Dict[str, Any]) -> int:
        return 0 if job.get("status") in ("completed", "pending", "running") else 1

    def follow(self, job_id: str, poll_s: float = 1.0) -> int:
        """Poll a job with a progress bar until it is terminal."""
        with Progress(
            SpinnerColumn(style="bright_green"),
            TextColumn("[progress.description]{task.description}", style="bold cyan"),
            BarColumn(complete_style="bright_blue", finished_style="bright_green"),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(job_id, total=100)
            while True:
                status, body = self.service.get_job(job_id)
                if status != 200:
                    return self._error(status, body)
                running = [t for t in body.get("targets") or [] if t.get("status") == "pending" and t.get("stage")]
                desc = f"{job_id} {body.get('status')}"
                if running:
                    desc += f" [{running[0]['target_id']}: {running[0]['stage']}]"
                progress.update(task, completed=int(body.get("progress") or 0), description=desc)
                if body.get("status") in self.TERMINAL:
                    break
                time.sleep(poll_s)
        self._emit(body, job_table(body))
        if body.get("error"):
            Log.warn(self.logger, str(body["error"]))
        return self._job_exit(body)

    def _submitted(self, status: int, body: Any, wait: bool) -> int:
        if status != 202:
            return self._error(status, body)
        job_id = body["job_id"]
        if wait:
            return self.follow(job_id)
        self._emit(body, f"Submitted job [bold]{job_id}[/bold]")
        self.logger.info("Job %s runs in this process until it finishes", job_id)
        return 0

    def discover(self) -> int:
        if self.args.cached:
            status, body = self.service.get_discovery(self.args.host)
        else:
            status, body = self.service.refresh_discovery(self.args.host)
        if status != 200:
            return self._error(status, body)
        self._emit(body, vms_table(body))
        return 0

    def migrate(self) -> int:
        a = self.args
        node = a.node
        if not node:
            cluster = self.service.config.clusters.get(a.cluster)
            node = cluster.default_node if cluster else None
        options: Dict[str, Any] = {
            "cluster_id": a.cluster,
            "node": node,
            "storage": a.storage,
            "bridge": a.bridge,
            "start_after_import": a.start,
            "strategy": None if a.strategy == "auto" else a.strategy,
        }
        status, body = self.service.submit_migration(
            {"source_host_id": a.host, "targets": list(a.vms), "options": options}
        )
        return self._submitted(status, body, a.wait)

    def distribute(self) -> int:
        a = self.args
        options = {"storage": a.storage} if a.storage else {}
        status, body = self.service.submit_distribution(
            {"source_cluster_id": a.cluster, "image": a.image, "targets": list(a.targets), "options": options}
        )
        return self._submitted(status, body, a.wait)

    def status(self) -> int:
        if self.args.wait:
            return self.follow(self.args.job_id)
        status, body = self.service.get_job(self.args.job_id)
        if status != 200:
            return self._error(status, body)
        self._emit(body, job_table(body))
        return 0

    def cancel(self) -> int:
        status, body = self.service.cancel_job(self.args.job_id)
        if status != 200:
            return self._error(status, body)
        self._emit(body, f"Job [bold]{body['id']}[/bold] is {_styled(body['status'])}")
        return 0

    def jobs(self) -> int:
        status, body = self.service.list_jobs(kind=self.args.kind, limit=self.args.limit)
        if status != 200:
            return self._error(status, body)
        self._emit(body, jobs_table(body))
        return 0

    def install_import_tools(self) -> int:
        status, body = self.service.install_import_tools(self.args.cluster)
        if status != 200:
            return self._error(status, body)
        verb = "installed" if body["installed"] else "already present"
        self._emit(body, f"{body['package']} {verb} on [bold]{body['cluster_id']}[/bold]")
        return 0

    def run(self) -> int:
        return getattr(self, self.args.command.replace("-", "_"))()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def run(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logger = Log.setup(
        args.verbose,
        args.log_file,
        quiet=args.quiet,
        color=sys.stderr.isatty(),
        json_logs=args.json_logs,
    )
    config = load_config(args.config, {"database": args.database, "scratch_dir": args.scratch_dir})
    # Only commands that run jobs in this process reconcile jobs a dead one left running.
    service = MigrationService(logger, config, recover=args.command in ("migrate", "distribute"))
    try:
        return Cli(logger, service, args).run()
    finally:
        service.shutdown(wait=True)
