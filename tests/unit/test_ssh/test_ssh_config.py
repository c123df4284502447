# SPDX-License-Identifier: LGPL-3.0-or-later
import unittest
from dataclasses import asdict
from pathlib import Path

from esxi2pve.ssh.ssh_config import SSHConfig


class TestSSHConfig(unittest.TestCase):
    """Test SSH configuration dataclass."""

    def test_default_config(self):
        config = SSHConfig(host="esx01.example.com")
        self.assertEqual(config.host, "esx01.example.com")
        self.assertEqual(config.user, "root")
        self.assertEqual(config.port, 22)
        self.assertIsNone(config.identity)
        self.assertFalse(config.sudo)
        self.assertFalse(config.use_rsync)

    def test_custom_config(self):
        config = SSHConfig(
            host=" pve-a.example.com ",
            user="admin",
            port=2222,
            identity="~/.ssh/id_ed25519",
            ssh_opt=["Compression=yes", "Compression=yes", "  "],
        )
        self.assertEqual(config.host, "pve-a.example.com")
        self.assertEqual(config.port, 2222)
        self.assertIsInstance(config.identity, Path)
        self.assertNotIn("~", str(config.identity))
        self.assertEqual(config.ssh_opt, ["Compression=yes"])

    def test_config_serialization(self):
        config_dict = asdict(SSHConfig(host="esx01", port=2222))
        self.assertEqual(config_dict["host"], "esx01")
        self.assertEqual(config_dict["port"], 2222)

    def test_target_brackets_ipv6(self):
        self.assertEqual(SSHConfig(host="10.0.0.5").target(), "root@10.0.0.5")
        self.assertEqual(SSHConfig(host="fd00::5").target(), "root@[fd00::5]")

    def test_rejects_bad_values(self):
        with self.assertRaises(ValueError):
            SSHConfig(host="  ")
        with self.assertRaises(ValueError):
            SSHConfig(host="h", user="")
        with self.assertRaises(ValueError):
            SSHConfig(host="h", port=70000)
        with self.assertRaises(ValueError):
            SSHConfig(host="h", strict_host_key_checking="maybe")


if __name__ == "__main__":
    unittest.main()
