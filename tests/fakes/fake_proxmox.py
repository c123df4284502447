# SPDX-License-Identifier: LGPL-3.0-or-later
"""ProxmoxClient stand-in that records calls instead of talking HTTP."""
from esxi2pve.core.exceptions import RemoteApiError


class FakeProxmox:
    def __init__(self, version="8.2.4", next_id=100, *, fail_create=False, fail_start=False, vmx=None, metadata=None,
                 login_error=None, fail_create_for=()):
        self._version = version
        self.next_id = next_id
        self.fail_create = fail_create
        self.fail_create_for = set(fail_create_for)
        self.fail_start = fail_start
        self.vmx = list(vmx or [])
        self.metadata = metadata or {}
        self.logged_in = False
        self.created = []
        self.started = []
        self.storages = []
        self.removed_storages = []
        self.version_calls = 0
        self.login_error = login_error

    def login(self):
        if self.login_error is not None:
            raise self.login_error
        self.logged_in = True

    def version(self):
        self.version_calls += 1
        return self._version

    def supports_esxi_import(self):
        major, minor = (int(x) for x in self.version().split(".")[:2])
        return (major, minor) >= (8, 2)

    def next_vmid(self):
        return self.next_id

    def create_vm(self, node, config):
        if self.fail_create or config.get("name") in self.fail_create_for:
            raise RemoteApiError(code=51, msg="Proxmox POST /nodes/%s/qemu -> HTTP 500" % node)
        self.created.append((node, dict(config)))
        return "UPID:%s:create:%s" % (node, config["vmid"])

    def wait_task(self, node, upid, **kwargs):
        return None

    def start_vm(self, node, vmid):
        if self.fail_start:
            raise RemoteApiError(code=51, msg="start failed")
        self.started.append(vmid)
        return "UPID:%s:start:%s" % (node, vmid)

    def add_esxi_storage(self, name, server, username, password, *, skip_cert_verification=True):
        self.storages.append(name)
        return name

    def remove_storage(self, name):
        self.removed_storages.append(name)

    def list_storage_content(self, node, storage, *, fmt=None):
        return [{"volid": "%s:%s" % (storage, v), "format": "vmx"} for v in self.vmx]

    def import_metadata(self, node, storage, volume):
        return dict(self.metadata)
