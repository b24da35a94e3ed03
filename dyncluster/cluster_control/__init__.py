"""
Cluster Control - clients for the management API of deployed nodes
"""
from .node_manager import NodeManager
from .cluster_manager import ClusterManager

__all__ = ['NodeManager', 'ClusterManager']
