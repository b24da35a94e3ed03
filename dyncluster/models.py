"""
Core data models for dyncluster
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional


@dataclass(frozen=True)
class ImageDef:
    """Describes a desired server image"""
    version: str
    build_no: int = 0
    use_community_edition: bool = False
    use_serverless: bool = False
    use_columnar: bool = False


@dataclass(frozen=True)
class ImageRef:
    """Resolved handle to a concrete image"""
    path: str


@dataclass(frozen=True)
class NodeState:
    """Metadata persisted inside the node container"""
    expiry: datetime


@dataclass
class NodeInfo:
    """
    Information about a deployed node.

    Assembled at listing time from the container labels and the persisted
    NodeState. An expiry of None means the expiry is unknown.
    """
    resource_id: str
    node_id: str
    cluster_id: str
    name: str = ""
    creator: str = ""
    purpose: str = ""
    initial_server_version: str = ""
    ip_address: str = ""
    expiry: Optional[datetime] = None


@dataclass
class DeployNodeOptions:
    """Options for deploying a single node"""
    purpose: str
    expiry: timedelta
    cluster_id: str
    image: ImageRef
    image_server_version: str = ""
    name: str = ""


@dataclass
class ClusterNodeInfo:
    """Backend-agnostic view of one cluster node"""
    node_id: str
    resource_id: str
    name: str
    ip_address: str


@dataclass
class ClusterInfo:
    """Backend-agnostic view of a deployed cluster"""
    cluster_id: str
    purpose: str
    expiry: Optional[datetime]
    state: str
    nodes: List[ClusterNodeInfo] = field(default_factory=list)


@dataclass
class NodeGroupDef:
    """A group of identical nodes within a cluster definition"""
    count: int
    version: str
    build_no: int = 0
    use_community_edition: bool = False
    use_serverless: bool = False
    use_columnar: bool = False
    services: List[str] = field(default_factory=lambda: ["kv", "n1ql", "index"])

    def image_def(self) -> ImageDef:
        return ImageDef(
            version=self.version,
            build_no=self.build_no,
            use_community_edition=self.use_community_edition,
            use_serverless=self.use_serverless,
            use_columnar=self.use_columnar,
        )


@dataclass
class ClusterDef:
    """Definition of a cluster to deploy"""
    purpose: str = ""
    expiry: timedelta = timedelta(hours=1)
    node_groups: List[NodeGroupDef] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return sum(group.count for group in self.node_groups)


@dataclass
class ConnectInfo:
    """Connection details for a deployed cluster"""
    conn_str: str
    mgmt: str


@dataclass
class UserInfo:
    username: str
    can_read: bool
    can_write: bool


@dataclass
class CreateUserOptions:
    username: str
    password: str
    can_read: bool = True
    can_write: bool = False


@dataclass
class BucketInfo:
    name: str


@dataclass
class CreateBucketOptions:
    name: str
    ram_quota_mb: int = 100


@dataclass
class CollectionInfo:
    name: str


@dataclass
class ScopeInfo:
    name: str
    collections: List[CollectionInfo] = field(default_factory=list)
