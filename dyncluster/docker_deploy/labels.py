"""
Container label schema identifying dyncluster nodes
"""
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

LABEL_PREFIX = "com.couchbase.dyncluster."

CLUSTER_ID_LABEL = LABEL_PREFIX + "cluster_id"
NODE_ID_LABEL = LABEL_PREFIX + "node_id"
NODE_NAME_LABEL = LABEL_PREFIX + "node_name"
CREATOR_LABEL = LABEL_PREFIX + "creator"
PURPOSE_LABEL = LABEL_PREFIX + "purpose"
INITIAL_SERVER_VERSION_LABEL = LABEL_PREFIX + "initial_server_version"


@dataclass(frozen=True)
class NodeLabels:
    """
    Identity of a node as stored in its container labels.

    Written once when the container is created and never changed. cluster_id
    and node_id are required; a container without them is not a managed node.
    """
    cluster_id: str
    node_id: str
    node_name: str = ""
    creator: str = ""
    purpose: str = ""
    initial_server_version: str = ""

    def to_labels(self) -> Dict[str, str]:
        labels = {
            CLUSTER_ID_LABEL: self.cluster_id,
            NODE_ID_LABEL: self.node_id,
            PURPOSE_LABEL: self.purpose,
            INITIAL_SERVER_VERSION_LABEL: self.initial_server_version,
        }
        if self.node_name:
            labels[NODE_NAME_LABEL] = self.node_name
        if self.creator:
            labels[CREATOR_LABEL] = self.creator
        return labels

    @classmethod
    def from_labels(cls, labels: Optional[Mapping[str, str]]) -> Optional["NodeLabels"]:
        """Parse container labels, returning None for unmanaged containers"""
        if not labels:
            return None

        cluster_id = labels.get(CLUSTER_ID_LABEL, "")
        node_id = labels.get(NODE_ID_LABEL, "")
        if not cluster_id or not node_id:
            return None

        return cls(
            cluster_id=cluster_id,
            node_id=node_id,
            node_name=labels.get(NODE_NAME_LABEL, ""),
            creator=labels.get(CREATOR_LABEL, ""),
            purpose=labels.get(PURPOSE_LABEL, ""),
            initial_server_version=labels.get(INITIAL_SERVER_VERSION_LABEL, ""),
        )
