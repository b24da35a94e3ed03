"""
Shared fixtures: an in-memory stand-in for the Docker SDK client

The fake keeps enough of the daemon's behavior to drive the controller end to
end: labelled containers on a single network, tar based file copies, exec of
iptables and apt-get, auto-removal on stop and an optional removal lag during
which a removed container keeps showing up in listings.
"""
import io
import ipaddress
import logging
import posixpath
import tarfile
import uuid
from collections import OrderedDict
from unittest.mock import Mock

import docker
import pytest
from docker.models.containers import ExecResult

from dyncluster.docker_deploy.controller import DockerController

logging.basicConfig(format="%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s", level=logging.DEBUG)

NETWORK_NAME = "dyncluster"
GATEWAY_IP = "172.28.0.1"
SUBNET = "172.28.0.0/16"


class FakeContainer:
    """A single container with an in-memory filesystem and iptables INPUT chain"""

    def __init__(self, client, image, name, labels, network, ip_address, auto_remove):
        self.client = client
        self.id = uuid.uuid4().hex + uuid.uuid4().hex
        self.name = name
        self.image = image
        self.labels = dict(labels or {})
        self.status = "created"
        self.auto_remove = auto_remove
        networks = {}
        if network:
            networks[network] = {"IPAddress": ip_address}
        self.attrs = {"NetworkSettings": {"Networks": networks}}

        self.files = {}
        self.dirs = set()
        self.put_archive_calls = 0
        self.reject_archives = False
        self.stop_error = None

        self.iptables_installed = client.iptables_installed
        self.rules = []
        self.exec_log = []
        self.fail_commands = {}

    def _check_exists(self):
        if self.id not in self.client.containers._containers:
            raise docker.errors.NotFound(f"No such container: {self.id}")

    def start(self):
        self._check_exists()
        self.status = "running"

    def stop(self):
        self._check_exists()
        if self.stop_error is not None:
            raise self.stop_error
        self.status = "exited"
        if self.auto_remove:
            self.client.containers._remove(self)

    def remove(self, force=False):
        self._check_exists()
        self.client.containers._remove(self)

    # File copies

    def put_archive(self, path, data):
        self._check_exists()
        self.put_archive_calls += 1
        if self.reject_archives:
            return False

        with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
            for member in tar:
                full_path = posixpath.normpath(posixpath.join(path, member.name))
                if member.isdir():
                    self.dirs.add(full_path)
                else:
                    self.files[full_path] = tar.extractfile(member).read()
        return True

    def get_archive(self, path):
        self._check_exists()
        path = posixpath.normpath(path)
        base = posixpath.basename(path)

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            if path in self.files:
                self._add_file(tar, base, self.files[path])
            elif path in self.dirs:
                dir_info = tarfile.TarInfo(base)
                dir_info.type = tarfile.DIRTYPE
                tar.addfile(dir_info)
                for file_path, content in sorted(self.files.items()):
                    if file_path.startswith(path + "/"):
                        self._add_file(tar, base + file_path[len(path):], content)
            else:
                raise docker.errors.NotFound(f"Could not find the file {path} in container {self.id}")
        return iter([buf.getvalue()]), {"name": base}

    @staticmethod
    def _add_file(tar, name, content):
        info = tarfile.TarInfo(name)
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))

    # Command execution

    def exec_run(self, cmd):
        self._check_exists()
        self.exec_log.append(list(cmd))

        if tuple(cmd) in self.fail_commands:
            return self.fail_commands[tuple(cmd)]

        if cmd[0] == "iptables":
            if not self.iptables_installed:
                return ExecResult(126, b'exec: "iptables": executable file not found in $PATH')
            return self._iptables(cmd[1:])

        if cmd[0] == "apt-get":
            if self.client.apt_fails:
                return ExecResult(100, b"E: Unable to locate package iptables")
            if "install" in cmd and self.client.apt_installs:
                self.iptables_installed = True
            return ExecResult(0, b"Reading package lists... Done\n")

        return ExecResult(127, f"sh: {cmd[0]}: command not found".encode())

    def _iptables(self, args):
        if args == ["-F"]:
            self.rules = []
            return ExecResult(0, b"")
        if args == ["-S"]:
            lines = ["-P INPUT ACCEPT"] + [f"-A INPUT -s {source} -j {target}" for source, target in self.rules]
            return ExecResult(0, "\n".join(lines).encode())
        if len(args) == 6 and args[0] == "-I" and args[1] == "INPUT" and args[2] == "-s" and args[4] == "-j":
            self.rules.insert(0, (args[3], args[5]))
            return ExecResult(0, b"")
        return ExecResult(2, b"iptables: bad argument")

    def accepts_from(self, source_ip):
        """Evaluate the INPUT chain for a packet from source_ip; first match wins, default ACCEPT"""
        address = ipaddress.ip_address(source_ip)
        for source, target in self.rules:
            if address in ipaddress.ip_network(source, strict=False):
                return target == "ACCEPT"
        return True


class FakeContainerCollection:

    def __init__(self, client):
        self.client = client
        self._containers = OrderedDict()
        # containers still visible to list() after removal: id -> [container, remaining listings]
        self._lingering = OrderedDict()
        self.create_calls = []
        self.list_calls = 0

    def _remove(self, container):
        self._containers.pop(container.id, None)
        container.status = "removing"
        if self.client.removal_lag > 0:
            self._lingering[container.id] = [container, self.client.removal_lag]

    def create(self, image, command=None, **kwargs):
        self.create_calls.append(dict(kwargs, image=image))
        ip_address = self.client.allocate_ip() if self.client.assign_ips else ""
        container = FakeContainer(
            self.client,
            image=image,
            name=kwargs.get("name"),
            labels=kwargs.get("labels"),
            network=kwargs.get("network"),
            ip_address=ip_address,
            auto_remove=kwargs.get("auto_remove", False),
        )
        self._containers[container.id] = container
        if self.client.hide_created:
            self.client.hidden_ids.add(container.id)
        return container

    def get(self, container_id):
        for container in self._containers.values():
            if container_id in (container.id, container.name) or container.id.startswith(container_id):
                return container
        raise docker.errors.NotFound(f"No such container: {container_id}")

    @staticmethod
    def _matches(container, filters):
        label_filters = (filters or {}).get("label")
        if label_filters is None:
            return True
        if isinstance(label_filters, str):
            label_filters = [label_filters]
        for label_filter in label_filters:
            key, sep, value = label_filter.partition("=")
            if key not in container.labels:
                return False
            if sep and container.labels[key] != value:
                return False
        return True

    def list(self, all=False, filters=None, **kwargs):
        self.list_calls += 1
        result = []
        for container in list(self._containers.values()):
            if container.id in self.client.hidden_ids:
                continue
            if not all and container.status != "running":
                continue
            if self._matches(container, filters):
                result.append(container)

        for container_id, entry in list(self._lingering.items()):
            container, remaining = entry
            if all and self._matches(container, filters):
                result.append(container)
            if remaining <= 1:
                del self._lingering[container_id]
            else:
                entry[1] = remaining - 1
        return result


class FakeNetwork:

    def __init__(self, name, attrs):
        self.name = name
        self.attrs = attrs


class FakeNetworkCollection:

    def __init__(self):
        self._networks = {}

    def add(self, name, ipam_configs):
        self._networks[name] = FakeNetwork(name, {"Name": name, "IPAM": {"Driver": "default", "Config": ipam_configs}})

    def get(self, name):
        if name not in self._networks:
            raise docker.errors.NotFound(f"network {name} not found")
        return self._networks[name]


class FakeImage:

    def __init__(self, tags):
        self.tags = list(tags)


class FakeImageCollection:

    def __init__(self):
        self.local_tags = []
        self.remote_tags = set()
        self.pull_calls = []

    def get(self, name):
        if name in self.local_tags:
            return FakeImage([name])
        raise docker.errors.ImageNotFound(f"No such image: {name}")

    def pull(self, repository, tag=None):
        full_name = f"{repository}:{tag}"
        self.pull_calls.append(full_name)
        if full_name not in self.remote_tags:
            raise docker.errors.NotFound(f"manifest for {full_name} not found")
        self.local_tags.append(full_name)
        return FakeImage([full_name])

    def list(self, name=None):
        return [
            FakeImage([tag]) for tag in self.local_tags
            if name is None or tag.rpartition(":")[0] == name
        ]


class FakeDockerClient:
    """Minimal docker.DockerClient replacement backed by plain Python objects"""

    def __init__(self):
        self.containers = FakeContainerCollection(self)
        self.networks = FakeNetworkCollection()
        self.images = FakeImageCollection()
        self.networks.add(NETWORK_NAME, [{"Subnet": SUBNET, "Gateway": GATEWAY_IP}])

        self.iptables_installed = True
        self.apt_fails = False
        self.apt_installs = True
        self.assign_ips = True
        self.hide_created = False
        self.hidden_ids = set()
        self.removal_lag = 0
        self._next_host = 2

    def allocate_ip(self):
        ip_address = str(ipaddress.ip_network(SUBNET)[self._next_host])
        self._next_host += 1
        return ip_address


@pytest.fixture
def docker_client():
    """In-memory Docker client with the default node network"""
    return FakeDockerClient()


@pytest.fixture
def running_container(docker_client):
    """A started container attached to the node network"""
    container = docker_client.containers.create(image="busybox", name="plain", network=NETWORK_NAME)
    container.start()
    return container


@pytest.fixture
def readiness_factory():
    """Readiness probe factory whose probes report online immediately"""
    return Mock(return_value=Mock())


@pytest.fixture
def controller(docker_client, readiness_factory):
    """DockerController wired to the fake client with short removal polling"""
    return DockerController(
        docker_client,
        NETWORK_NAME,
        readiness_factory=readiness_factory,
        creator="tester",
        remove_poll_interval=0.01,
        remove_timeout=2.0,
    )
