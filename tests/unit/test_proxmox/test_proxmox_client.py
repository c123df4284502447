# SPDX-License-Identifier: LGPL-3.0-or-later
import unittest
from unittest.mock import MagicMock, Mock

import requests

from esxi2pve.core.exceptions import RemoteApiError
from esxi2pve.proxmox.client import ProxmoxClient, parse_version


def _resp(status=200, data=None, errors=None, reason="OK"):
    r = Mock()
    r.status_code = status
    r.reason = reason
    body = {"data": data}
    if errors:
        body["errors"] = errors
    r.json.return_value = body
    return r


class TestProxmoxClient(unittest.TestCase):
    def setUp(self):
        self.http = MagicMock()
        self.http.Session.return_value = MagicMock()
        self.session = self.http.Session.return_value
        self.session.post.return_value = _resp(data={"ticket": "PVE:root@pam:abc", "CSRFPreventionToken": "csrf-1"})
        self.client = ProxmoxClient(Mock(), "pve-a.example.com", "root", "secret", http_client=self.http)

    def test_init_validation(self):
        with self.assertRaises(ValueError):
            ProxmoxClient(Mock(), "", "root", "x", http_client=self.http)
        with self.assertRaises(ValueError):
            ProxmoxClient(Mock(), "h", "root", "x", port=0, http_client=self.http)

    def test_user_gets_realm(self):
        self.assertEqual(self.client.user, "root@pam")
        self.assertEqual(ProxmoxClient(Mock(), "h", "svc@pve", "x", http_client=self.http).user, "svc@pve")

    def test_login_sets_cookie(self):
        self.client.login()

        url = self.session.post.call_args.args[0]
        self.assertEqual(url, "https://pve-a.example.com:8006/api2/json/access/ticket")
        self.session.cookies.set.assert_called_once_with("PVEAuthCookie", "PVE:root@pam:abc")

    def test_login_rejected(self):
        self.session.post.return_value = _resp(status=401, reason="authentication failure")
        with self.assertRaises(RemoteApiError):
            self.client.login()

    def test_login_unreachable(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(RemoteApiError) as cm:
            self.client.login()
        self.assertEqual(cm.exception.http_status, 502)

    def test_writes_carry_csrf_token(self):
        self.session.request.side_effect = [_resp(data="105"), _resp(data="UPID:pve1:0001")]

        self.assertEqual(self.client.next_vmid(), 105)
        upid = self.client.create_vm("pve1", {"vmid": 105, "name": "web01"})

        get_call, post_call = self.session.request.call_args_list
        self.assertEqual(get_call.kwargs["headers"], {})
        self.assertEqual(post_call.args[:2], ("POST", "https://pve-a.example.com:8006/api2/json/nodes/pve1/qemu"))
        self.assertEqual(post_call.kwargs["headers"], {"CSRFPreventionToken": "csrf-1"})
        self.assertEqual(upid, "UPID:pve1:0001")

    def test_http_error_carries_detail(self):
        self.session.request.return_value = _resp(status=400, reason="Parameter verification failed",
                                                  errors={"vmid": "VM 105 already exists"})
        with self.assertRaises(RemoteApiError) as cm:
            self.client.create_vm("pve1", {"vmid": 105})
        self.assertIn("VM 105 already exists", cm.exception.msg)
        self.assertEqual(cm.exception.context["status"], 400)

    def test_next_vmid_garbage(self):
        self.session.request.return_value = _resp(data="not-a-number")
        with self.assertRaises(RemoteApiError):
            self.client.next_vmid()

    def test_capability_from_version(self):
        self.session.request.return_value = _resp(data={"version": "8.2.4", "release": "8.2"})
        self.assertTrue(self.client.supports_esxi_import())
        self.session.request.return_value = _resp(data={"version": "8.1.10"})
        self.assertFalse(self.client.supports_esxi_import())

    def test_add_esxi_storage_payload(self):
        self.session.request.return_value = _resp(data=None)
        self.client.add_esxi_storage("esxi2pve-abc", "esx01.example.com", "root", "vmware", skip_cert_verification=False)

        call = self.session.request.call_args
        self.assertEqual(call.args[0], "POST")
        self.assertEqual(call.kwargs["data"]["type"], "esxi")
        self.assertEqual(call.kwargs["data"]["skip-cert-verification"], 0)

    def test_list_storage_content_filters_format(self):
        self.session.request.return_value = _resp(
            data=[{"volid": "s:a/a.vmx", "format": "vmx"}, {"volid": "s:a/a.vmdk", "format": "vmdk"}]
        )
        items = self.client.list_storage_content("pve1", "s", fmt="vmx")
        self.assertEqual([i["volid"] for i in items], ["s:a/a.vmx"])

    def test_import_metadata_empty_is_error(self):
        self.session.request.return_value = _resp(data=None)
        with self.assertRaises(RemoteApiError):
            self.client.import_metadata("pve1", "s", "s:a/a.vmx")

    def test_wait_task_polls_until_stopped(self):
        self.session.request.side_effect = [
            _resp(data={"status": "running"}),
            _resp(data={"status": "stopped", "exitstatus": "OK"}),
        ]
        self.client.wait_task("pve1", "UPID:pve1:0001", poll_s=0)
        self.assertEqual(self.session.request.call_count, 2)

    def test_wait_task_failure(self):
        self.session.request.return_value = _resp(data={"status": "stopped", "exitstatus": "unable to create VM"})
        with self.assertRaises(RemoteApiError) as cm:
            self.client.wait_task("pve1", "UPID:pve1:0001", poll_s=0)
        self.assertIn("unable to create VM", cm.exception.msg)

    def test_wait_task_without_upid(self):
        self.client.wait_task("pve1", "")
        self.session.request.assert_not_called()


class TestParseVersion(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_version("8.2.4"), (8, 2))
        self.assertEqual(parse_version("7.4-3"), (7, 4))
        self.assertIsNone(parse_version("unknown"))


if __name__ == "__main__":
    unittest.main()
