"""
Cluster Manager - management REST API calls against a deployed cluster

Used by the container deployer to form clusters out of freshly deployed nodes
and to manage users, buckets, scopes and collections on them.
"""
import logging
import threading
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import requests

from ..errors import ClusterControlError
from ..models import BucketInfo, CollectionInfo, CreateBucketOptions, CreateUserOptions, ScopeInfo, UserInfo
from ..utils.polling import wait_until

READ_ROLES = ("admin", "ro_admin", "data_reader", "bucket_full_access")
WRITE_ROLES = ("admin", "data_writer", "bucket_full_access")


class ClusterManager:
    """Client for the management API of one node of a cluster"""

    def __init__(self, endpoint: str, username: str, password: str,
                 session: Optional[requests.Session] = None, query_port: int = 8093,
                 request_timeout: float = 30.0, logger: Optional[logging.Logger] = None):
        self.endpoint = endpoint.rstrip("/")
        self.auth = (username, password)
        self.session = session or requests.Session()
        self.query_port = query_port
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(__name__)

    @property
    def query_endpoint(self) -> str:
        parts = urlsplit(self.endpoint)
        return urlunsplit((parts.scheme, f"{parts.hostname}:{self.query_port}", "", "", ""))

    def _request(self, method: str, path: str, base: Optional[str] = None,
                 expected: Iterable[int] = (200,), **kwargs) -> requests.Response:
        url = f"{base or self.endpoint}{path}"
        self.logger.debug(f"{method} {url}")
        try:
            resp = self.session.request(method, url, auth=self.auth, timeout=self.request_timeout, **kwargs)
        except requests.RequestException as e:
            raise ClusterControlError(f"{method} {path} failed: {e}") from e

        if resp.status_code not in expected:
            raise ClusterControlError(
                f"{method} {path} returned {resp.status_code}: {resp.text.strip()}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    # Cluster formation

    def init_cluster(self, hostname: str, services: List[str], memory_quota_mb: int = 1024,
                     index_memory_quota_mb: int = 256) -> None:
        """Initialise this node as the first node of a new cluster"""
        self.logger.info(f"Initialising cluster on {hostname} with services {','.join(services)}")
        self._request("POST", "/clusterInit", data={
            "hostname": hostname,
            "services": ",".join(services),
            "username": self.auth[0],
            "password": self.auth[1],
            "port": "SAME",
            "memoryQuota": memory_quota_mb,
            "indexMemoryQuota": index_memory_quota_mb,
            "afamily": "ipv4",
        })

    def add_node(self, hostname: str, services: List[str]) -> None:
        self.logger.info(f"Adding node {hostname} with services {','.join(services)}")
        self._request("POST", "/controller/addNode", data={
            "hostname": hostname,
            "user": self.auth[0],
            "password": self.auth[1],
            "services": ",".join(services),
        })

    def get_pool_nodes(self) -> List[Dict]:
        return self._request("GET", "/pools/default").json().get("nodes", [])

    def otp_node_for(self, hostname: str) -> str:
        """Map a node address to its internal node name"""
        for node in self.get_pool_nodes():
            if node.get("hostname", "").split(":")[0] == hostname:
                return node["otpNode"]
        raise ClusterControlError(f"node {hostname} is not part of the cluster")

    def rebalance(self, ejected_hostnames: Iterable[str] = ()) -> None:
        known_nodes = [node["otpNode"] for node in self.get_pool_nodes()]
        ejected_nodes = [self.otp_node_for(hostname) for hostname in ejected_hostnames]

        self.logger.info(f"Starting rebalance of {len(known_nodes)} nodes, ejecting {len(ejected_nodes)}")
        self._request("POST", "/controller/rebalance", data={
            "knownNodes": ",".join(known_nodes),
            "ejectedNodes": ",".join(ejected_nodes),
        })

    def is_rebalance_complete(self) -> bool:
        progress = self._request("GET", "/pools/default/rebalanceProgress").json()
        if progress.get("errorMessage"):
            raise ClusterControlError(f"rebalance failed: {progress['errorMessage']}")
        return progress.get("status") == "none"

    def wait_for_rebalance(self, interval: float = 1.0, timeout: float = 600.0,
                           cancel: Optional[threading.Event] = None) -> None:
        wait_until(self.is_rebalance_complete, interval=interval, timeout=timeout,
                   cancel=cancel, description="rebalance to complete")
        self.logger.info("Rebalance complete")

    # Users

    def list_users(self) -> List[UserInfo]:
        users = []
        for user in self._request("GET", "/settings/rbac/users").json():
            roles = {role.get("role") for role in user.get("roles", [])}
            users.append(UserInfo(
                username=user["id"],
                can_read=bool(roles.intersection(READ_ROLES)),
                can_write=bool(roles.intersection(WRITE_ROLES)),
            ))
        return users

    def create_user(self, opts: CreateUserOptions) -> None:
        roles = []
        if opts.can_read:
            roles.append("data_reader[*]")
        if opts.can_write:
            roles.append("data_writer[*]")
        if not roles:
            raise ClusterControlError(f"user {opts.username} must be able to read or write")

        self._request("PUT", f"/settings/rbac/users/local/{quote(opts.username, safe='')}", data={
            "password": opts.password,
            "roles": ",".join(roles),
        })

    def delete_user(self, username: str) -> None:
        self._request("DELETE", f"/settings/rbac/users/local/{quote(username, safe='')}")

    # Buckets

    def list_buckets(self) -> List[BucketInfo]:
        return [BucketInfo(name=bucket["name"]) for bucket in self._request("GET", "/pools/default/buckets").json()]

    def create_bucket(self, opts: CreateBucketOptions) -> None:
        self._request("POST", "/pools/default/buckets", expected=(200, 202), data={
            "name": opts.name,
            "ramQuotaMB": opts.ram_quota_mb,
            "bucketType": "couchbase",
            "flushEnabled": 1,
        })

    def delete_bucket(self, bucket_name: str) -> None:
        self._request("DELETE", f"/pools/default/buckets/{quote(bucket_name, safe='')}")

    # Scopes and collections

    def _scopes_path(self, bucket_name: str) -> str:
        return f"/pools/default/buckets/{quote(bucket_name, safe='')}/scopes"

    def list_collections(self, bucket_name: str) -> List[ScopeInfo]:
        manifest = self._request("GET", self._scopes_path(bucket_name)).json()
        return [
            ScopeInfo(
                name=scope["name"],
                collections=[CollectionInfo(name=c["name"]) for c in scope.get("collections", [])],
            )
            for scope in manifest.get("scopes", [])
        ]

    def create_scope(self, bucket_name: str, scope_name: str) -> None:
        self._request("POST", self._scopes_path(bucket_name), data={"name": scope_name})

    def create_collection(self, bucket_name: str, scope_name: str, collection_name: str) -> None:
        path = f"{self._scopes_path(bucket_name)}/{quote(scope_name, safe='')}/collections"
        self._request("POST", path, data={"name": collection_name})

    def delete_scope(self, bucket_name: str, scope_name: str) -> None:
        self._request("DELETE", f"{self._scopes_path(bucket_name)}/{quote(scope_name, safe='')}")

    def delete_collection(self, bucket_name: str, scope_name: str, collection_name: str) -> None:
        path = (f"{self._scopes_path(bucket_name)}/{quote(scope_name, safe='')}"
                f"/collections/{quote(collection_name, safe='')}")
        self._request("DELETE", path)

    # Misc

    def get_certificate(self) -> str:
        return self._request("GET", "/pools/default/certificate").text

    def execute_query(self, statement: str) -> str:
        return self._request("POST", "/query/service", base=self.query_endpoint,
                             data={"statement": statement}).text
