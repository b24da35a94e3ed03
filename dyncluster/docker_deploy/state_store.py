"""
Node state persisted inside the node container's own filesystem

Containers have no writable metadata store after creation, so the state is
written as a small JSON document into a tar archive that is copied into the
container. The state lives exactly as long as the container does.
"""
import io
import json
import logging
import posixpath
import re
import tarfile
import time
from datetime import datetime, timezone
from typing import Optional

import docker
import requests

from ..errors import ResourceNotFoundError, StateDecodeError, TransientBackendError
from ..interfaces import INodeStateStore
from ..models import NodeState
from ..utils.docker_exec import get_container

STATE_ROOT = "/var/"
STATE_DIR = "cbdyncluster"
STATE_FILE = STATE_DIR + "/state"

# Container states in which the filesystem is no longer considered reachable
UNREACHABLE_STATUSES = ("exited", "dead", "removing")

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an RFC 3339 UTC timestamp; naive values are taken as UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, accepting up to nanosecond precision"""
    match = _TIMESTAMP_RE.match(text.strip())
    if not match:
        raise ValueError(f"invalid timestamp: {text!r}")

    base, fraction, offset = match.groups()
    fraction = (fraction or "0")[:6].ljust(6, "0")
    if offset == "Z":
        offset = "+00:00"
    return datetime.fromisoformat(f"{base}.{fraction}{offset}").astimezone(timezone.utc)


def encode_state(state: NodeState) -> bytes:
    return json.dumps({"Expiry": format_timestamp(state.expiry)}, separators=(",", ":")).encode("utf-8")


def decode_state(data: bytes) -> NodeState:
    try:
        doc = json.loads(data.decode("utf-8"))
        return NodeState(expiry=parse_timestamp(doc["Expiry"]))
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise StateDecodeError(f"failed to parse node state: {e}") from e


def build_state_archive(payload: bytes) -> bytes:
    """Wrap an encoded state document as the single file entry of a tar archive"""
    now = time.time()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        dir_info = tarfile.TarInfo(STATE_DIR)
        dir_info.type = tarfile.DIRTYPE
        dir_info.mode = 0o755
        dir_info.mtime = now
        tar.addfile(dir_info)

        file_info = tarfile.TarInfo(STATE_FILE)
        file_info.size = len(payload)
        file_info.mode = 0o644
        file_info.mtime = now
        tar.addfile(file_info, io.BytesIO(payload))
    return buf.getvalue()


def extract_state_payload(archive: bytes) -> Optional[bytes]:
    """Find the state file in an archive, returning None if it is absent"""
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r") as tar:
        for member in tar:
            if posixpath.normpath(member.name) != STATE_FILE or not member.isfile():
                continue
            extracted = tar.extractfile(member)
            if extracted is None:
                return None
            return extracted.read()
    return None


class ContainerStateStore(INodeStateStore):
    """Stores NodeState inside the container at /var/cbdyncluster/state"""

    def __init__(self, docker_client: docker.DockerClient, logger: Optional[logging.Logger] = None):
        self.client = docker_client
        self.logger = logger or logging.getLogger(__name__)

    def write_state(self, resource_id: str, state: NodeState) -> None:
        self.logger.debug(f"Writing node state to {resource_id[:12]}: expiry={format_timestamp(state.expiry)}")

        container = get_container(self.client, resource_id)
        archive = build_state_archive(encode_state(state))

        # The archive is uploaded in a single call so the state file lands whole or not at all
        try:
            written = container.put_archive(STATE_ROOT, archive)
        except docker.errors.NotFound as e:
            raise ResourceNotFoundError(f"failed to write node state: {e}", resource_id) from e
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to write node state: {e}", resource_id) from e

        if not written:
            raise TransientBackendError("failed to write node state: archive was rejected", resource_id)

    def read_state(self, resource_id: str) -> Optional[NodeState]:
        self.logger.debug(f"Reading node state from {resource_id[:12]}")

        container = get_container(self.client, resource_id)
        if container.status in UNREACHABLE_STATUSES:
            raise ResourceNotFoundError(f"container is {container.status}, state unreachable", resource_id)

        try:
            stream, _ = container.get_archive(posixpath.join(STATE_ROOT, STATE_DIR))
            archive = b"".join(stream)
        except docker.errors.NotFound:
            # Either the state directory was never written or the container just went away
            get_container(self.client, resource_id)
            return None
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            # includes streams cut off when an auto-removed container goes away mid-copy
            raise TransientBackendError(f"failed to read node state: {e}", resource_id) from e

        try:
            payload = extract_state_payload(archive)
        except tarfile.TarError as e:
            raise StateDecodeError(f"failed to read node state archive: {e}", resource_id) from e

        if payload is None:
            return None
        return decode_state(payload)
