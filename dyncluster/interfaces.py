"""
Base interfaces and abstract classes for all major components
"""
import threading
from abc import ABC, abstractmethod
from typing import List, Optional
from .models import (
    ImageDef, ImageRef, NodeState, ClusterDef, ClusterInfo, ConnectInfo,
    UserInfo, CreateUserOptions, BucketInfo, CreateBucketOptions, ScopeInfo
)


class INodeStateStore(ABC):
    """
    Write-once / read-many store for node metadata, keyed by resource id.

    Backends without a filesystem substitute their own annotation or
    metadata store behind this interface.
    """

    @abstractmethod
    def write_state(self, resource_id: str, state: NodeState) -> None:
        """Persist state for the given resource"""
        pass

    @abstractmethod
    def read_state(self, resource_id: str) -> Optional[NodeState]:
        """Read state back, returning None when no state was ever written"""
        pass


class IImageProvider(ABC):
    """Interface for resolving image definitions into deployable images"""

    @abstractmethod
    def get_image(self, image_def: ImageDef) -> ImageRef:
        """Resolve an image definition, fetching the image if needed"""
        pass

    @abstractmethod
    def list_images(self) -> List[ImageDef]:
        """List locally available images in ascending order"""
        pass

    @abstractmethod
    def search_images(self, version: str) -> List[ImageDef]:
        """List available images matching a version prefix"""
        pass

    @abstractmethod
    def get_image_raw(self, image_path: str) -> ImageRef:
        """Resolve an explicit image path, fetching it if needed"""
        pass


class IDeployer(ABC):
    """Backend-agnostic interface for cluster lifecycle management"""

    @abstractmethod
    def list_clusters(self) -> List[ClusterInfo]:
        """List all clusters managed by this deployer"""
        pass

    @abstractmethod
    def new_cluster(self, cluster_def: ClusterDef, cancel: Optional[threading.Event] = None) -> ClusterInfo:
        """Deploy a new cluster and wait until it is usable"""
        pass

    @abstractmethod
    def get_definition(self, cluster_id: str) -> ClusterDef:
        """Reconstruct the definition of a deployed cluster"""
        pass

    @abstractmethod
    def modify_cluster(self, cluster_id: str, cluster_def: ClusterDef,
                       cancel: Optional[threading.Event] = None) -> None:
        """Bring a deployed cluster in line with a new definition"""
        pass

    @abstractmethod
    def remove_cluster(self, cluster_id: str, cancel: Optional[threading.Event] = None) -> None:
        """Remove a cluster and all of its nodes"""
        pass

    @abstractmethod
    def remove_all(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove every cluster managed by this deployer"""
        pass

    @abstractmethod
    def cleanup(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove clusters whose expiry has passed"""
        pass

    @abstractmethod
    def get_connect_info(self, cluster_id: str) -> ConnectInfo:
        """Get connection strings for a cluster"""
        pass

    @abstractmethod
    def list_users(self, cluster_id: str) -> List[UserInfo]:
        pass

    @abstractmethod
    def create_user(self, cluster_id: str, opts: CreateUserOptions) -> None:
        pass

    @abstractmethod
    def delete_user(self, cluster_id: str, username: str) -> None:
        pass

    @abstractmethod
    def list_buckets(self, cluster_id: str) -> List[BucketInfo]:
        pass

    @abstractmethod
    def create_bucket(self, cluster_id: str, opts: CreateBucketOptions) -> None:
        pass

    @abstractmethod
    def delete_bucket(self, cluster_id: str, bucket_name: str) -> None:
        pass

    @abstractmethod
    def get_certificate(self, cluster_id: str) -> str:
        """Fetch the cluster's root certificate in PEM form"""
        pass

    @abstractmethod
    def execute_query(self, cluster_id: str, query: str) -> str:
        """Execute a query statement and return the raw response body"""
        pass

    @abstractmethod
    def list_collections(self, cluster_id: str, bucket_name: str) -> List[ScopeInfo]:
        pass

    @abstractmethod
    def create_scope(self, cluster_id: str, bucket_name: str, scope_name: str) -> None:
        pass

    @abstractmethod
    def create_collection(self, cluster_id: str, bucket_name: str, scope_name: str,
                          collection_name: str) -> None:
        pass

    @abstractmethod
    def delete_scope(self, cluster_id: str, bucket_name: str, scope_name: str) -> None:
        pass

    @abstractmethod
    def delete_collection(self, cluster_id: str, bucket_name: str, scope_name: str,
                          collection_name: str) -> None:
        pass
