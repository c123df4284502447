# SPDX-License-Identifier: LGPL-3.0-or-later
import io
import json
import logging
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from rich.console import Console

from esxi2pve.__main__ import main
from esxi2pve.cli import Cli, build_parser, job_table, parse_args
from esxi2pve.core.exceptions import ConfigError


def _job(status="completed", progress=100):
    return {
        "id": "migration-20260101-120000-abcdef",
        "kind": "migration",
        "status": status,
        "progress": progress,
        "targets": [
            {"target_id": "web01", "status": "success", "stage": "completed", "message": "Imported as VMID 100",
             "produced_resource_id": "pve-a/pve1/100"},
        ],
        "error": None,
    }


class TestParser(unittest.TestCase):
    def test_migrate(self):
        args = parse_args(
            ["-c", "cfg.yaml", "-vv", "migrate", "esx01", "web01", "db01", "--cluster", "pve-a", "--storage", "local-lvm"]
        )
        self.assertEqual(args.command, "migrate")
        self.assertEqual(args.config, Path("cfg.yaml"))
        self.assertEqual(args.verbose, 2)
        self.assertEqual(args.vms, ["web01", "db01"])
        self.assertEqual(args.strategy, "auto")
        self.assertIsNone(args.node)
        self.assertFalse(args.wait)

    def test_distribute(self):
        args = parse_args(["distribute", "pve-a", "debian-12.iso", "--to", "pve-b", "pve-c", "--storage", "iso-nfs"])
        self.assertEqual(args.targets, ["pve-b", "pve-c"])
        self.assertEqual(args.storage, "iso-nfs")

    def test_command_required(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_install_import_tools_command(self):
        args = parse_args(["install-import-tools", "pve-a"])
        self.assertEqual(args.command, "install-import-tools")
        self.assertEqual(args.cluster, "pve-a")

    def test_bad_strategy(self):
        with self.assertRaises(SystemExit):
            parse_args(["migrate", "esx01", "web01", "--cluster", "a", "--storage", "s", "--strategy", "magic"])


class TestCli(unittest.TestCase):
    def _cli(self, argv, service):
        out = io.StringIO()
        console = Console(file=out, width=200, color_system=None)
        return Cli(Mock(), service, parse_args(argv), console=console), out

    def _service(self):
        svc = Mock()
        svc.config.clusters = {"pve-a": Mock(default_node="pve1")}
        return svc

    def test_migrate_defaults_node_and_strategy(self):
        svc = self._service()
        svc.submit_migration.return_value = (202, {"job_id": "migration-x", "initial_status": "pending"})
        cli, _ = self._cli(["migrate", "esx01", "web01", "--cluster", "pve-a", "--storage", "local-lvm"], svc)

        self.assertEqual(cli.run(), 0)
        request = svc.submit_migration.call_args.args[0]
        self.assertEqual(request["source_host_id"], "esx01")
        self.assertEqual(request["targets"], ["web01"])
        self.assertEqual(request["options"]["node"], "pve1")
        self.assertIsNone(request["options"]["strategy"])

    def test_submit_error_exit_code(self):
        svc = self._service()
        svc.submit_distribution.return_value = (
            400, {"error": {"type": "InvalidInput", "code": 2, "message": "Unknown target cluster(s): pve-z"}}
        )
        cli, _ = self._cli(["distribute", "pve-a", "debian-12.iso", "--to", "pve-z"], svc)
        self.assertEqual(cli.run(), 2)

    def test_status_codes_without_error_code(self):
        svc = self._service()
        svc.get_job.return_value = (502, {"error": {"type": "RemoteApiError", "code": 1, "message": "down"}})
        cli, _ = self._cli(["status", "migration-x"], svc)
        self.assertEqual(cli.run(), 3)

    def test_status_json(self):
        svc = self._service()
        svc.get_job.return_value = (200, _job())
        cli, out = self._cli(["--json", "status", "migration-x"], svc)

        self.assertEqual(cli.run(), 0)
        self.assertEqual(json.loads(out.getvalue())["targets"][0]["produced_resource_id"], "pve-a/pve1/100")

    def test_follow_failed_job_exits_nonzero(self):
        svc = self._service()
        svc.get_job.side_effect = [(200, _job("running", 40)), (200, dict(_job("failed"), error="boom"))]
        cli, _ = self._cli(["status", "migration-x", "--wait"], svc)

        self.assertEqual(cli.follow("migration-x", poll_s=0), 1)
        self.assertEqual(svc.get_job.call_count, 2)

    def test_cancel(self):
        svc = self._service()
        svc.cancel_job.return_value = (200, _job("cancelled"))
        cli, out = self._cli(["cancel", "migration-x"], svc)
        self.assertEqual(cli.run(), 0)
        self.assertIn("cancelled", out.getvalue())

    def test_jobs_table(self):
        svc = self._service()
        svc.list_jobs.return_value = (200, [_job()])
        cli, out = self._cli(["jobs", "--kind", "migration", "--limit", "5"], svc)
        self.assertEqual(cli.run(), 0)
        svc.list_jobs.assert_called_once_with(kind="migration", limit=5)
        self.assertIn("migration-20260101-120000-abcdef", out.getvalue())

    def test_job_table_rows(self):
        table = job_table(_job())
        self.assertEqual(table.row_count, 1)

    def test_install_import_tools(self):
        svc = self._service()
        svc.install_import_tools.return_value = (
            200, {"cluster_id": "pve-a", "package": "pve-esxi-import-tools", "installed": True}
        )
        cli, out = self._cli(["install-import-tools", "pve-a"], svc)

        self.assertEqual(cli.run(), 0)
        svc.install_import_tools.assert_called_once_with("pve-a")
        self.assertIn("pve-esxi-import-tools installed on pve-a", out.getvalue())

    def test_install_import_tools_unknown_cluster(self):
        svc = self._service()
        svc.install_import_tools.return_value = (
            404, {"error": {"type": "NotFound", "code": 1, "message": "Unknown cluster: pve-z"}}
        )
        cli, _ = self._cli(["install-import-tools", "pve-z"], svc)
        self.assertEqual(cli.run(), 4)


class TestMain(unittest.TestCase):
    def setUp(self):
        # main() logs to stderr until Log.setup() has given the logger handlers
        p = patch("esxi2pve.__main__.logging.getLogger", return_value=logging.Logger("esxi2pve-main"))
        p.start()
        self.addCleanup(p.stop)

    def test_setup_error_exits_with_its_code(self):
        with patch("esxi2pve.__main__.run", side_effect=ConfigError(code=2, msg="Config file not found: x.yaml")), \
                patch("esxi2pve.__main__._print_stderr") as err:
            with self.assertRaises(SystemExit) as ei:
                main()
        self.assertEqual(ei.exception.code, 2)
        self.assertIn("Config file not found", err.call_args.args[0])

    def test_interrupt_exits_130(self):
        with patch("esxi2pve.__main__.run", side_effect=KeyboardInterrupt), patch("esxi2pve.__main__._print_stderr"):
            with self.assertRaises(SystemExit) as ei:
                main()
        self.assertEqual(ei.exception.code, 130)

    def test_unhandled_error_exits_1(self):
        with patch("esxi2pve.__main__.run", side_effect=RuntimeError("boom")), \
                patch("esxi2pve.__main__._print_stderr") as err:
            with self.assertRaises(SystemExit) as ei:
                main()
        self.assertEqual(ei.exception.code, 1)
        self.assertIn("UNHANDLED RuntimeError: boom", err.call_args_list[0].args[0])


if __name__ == "__main__":
    unittest.main()
