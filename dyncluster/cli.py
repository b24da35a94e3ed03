#!/usr/bin/env python3
"""
Command-line interface for dyncluster
Provides commands for allocating, inspecting, partitioning and removing test clusters.
"""
import sys
import argparse
import logging
import traceback
from datetime import datetime, timezone
from typing import Optional

import docker

from . import __version__
from .config import AppConfig, load_cluster_def, load_config, parse_duration
from .docker_deploy.deployer import DockerDeployer, new_docker_deployer
from .errors import DynClusterError
from .models import ClusterDef, CreateBucketOptions, CreateUserOptions, NodeGroupDef


class DynClusterCLI:
    """Command-line interface for dyncluster"""

    def __init__(self, config: Optional[AppConfig] = None, deployer: Optional[DockerDeployer] = None):
        self.config = config or AppConfig()
        self._deployer = deployer

    @property
    def deployer(self) -> DockerDeployer:
        if self._deployer is None:
            self._deployer = new_docker_deployer(self.config)
        return self._deployer

    def list_clusters(self, args) -> int:
        """Print all clusters and their nodes"""
        clusters = self.deployer.list_clusters()
        if not clusters:
            print("No clusters")
            return 0

        now = datetime.now(timezone.utc)
        for cluster in clusters:
            if cluster.expiry is None:
                expiry = "unknown"
            else:
                remaining = cluster.expiry - now
                expiry = "expired" if remaining.total_seconds() <= 0 else f"{int(remaining.total_seconds() // 60)}m left"
            print(f"{cluster.cluster_id} [{cluster.state}] purpose={cluster.purpose or '-'} expiry={expiry}")
            for node in cluster.nodes:
                print(f"  {node.name or '-':<10} {node.node_id}  {node.resource_id[:12]}  {node.ip_address}")
        return 0

    def build_cluster_def(self, args) -> ClusterDef:
        """Build a cluster definition from --def-file or the inline options"""
        if args.def_file:
            return load_cluster_def(args.def_file, self.config.default_expiry)

        if not args.version:
            raise DynClusterError("alloc requires either --def-file or --version")

        return ClusterDef(
            purpose=args.purpose or "",
            expiry=parse_duration(args.expiry) if args.expiry else self.config.default_expiry,
            node_groups=[NodeGroupDef(
                count=args.count,
                version=args.version,
                use_community_edition=args.community,
            )],
        )

    def allocate(self, args) -> int:
        """Deploy a new cluster"""
        cluster_def = self.build_cluster_def(args)
        cluster = self.deployer.new_cluster(cluster_def)
        print(cluster.cluster_id)
        return 0

    def remove(self, args) -> int:
        self.deployer.remove_cluster(args.cluster)
        return 0

    def remove_all(self, args) -> int:
        self.deployer.remove_all()
        return 0

    def cleanup(self, args) -> int:
        self.deployer.cleanup()
        return 0

    def connstr(self, args) -> int:
        info = self.deployer.get_connect_info(args.cluster)
        print(info.conn_str)
        if args.verbose:
            print(info.mgmt)
        return 0

    def chaos(self, args) -> int:
        """Block or allow peer traffic for a single node"""
        if args.action == 'block':
            self.deployer.block_node_traffic(args.cluster, args.node)
        else:
            self.deployer.allow_node_traffic(args.cluster, args.node)
        print(f"Traffic for {args.node}: {'blocked' if args.action == 'block' else 'allowed'}")
        return 0

    def images(self, args) -> int:
        provider = self.deployer.image_provider
        defs = provider.search_images(args.version) if args.version else provider.list_images()
        for image_def in defs:
            edition = "community" if image_def.use_community_edition else "enterprise"
            print(f"{image_def.version} ({edition})")
        return 0

    def buckets(self, args) -> int:
        if args.action == 'list':
            for bucket in self.deployer.list_buckets(args.cluster):
                print(bucket.name)
        elif args.action == 'create':
            self.deployer.create_bucket(args.cluster, CreateBucketOptions(name=args.name, ram_quota_mb=args.ram_quota))
        else:
            self.deployer.delete_bucket(args.cluster, args.name)
        return 0

    def users(self, args) -> int:
        if args.action == 'list':
            for user in self.deployer.list_users(args.cluster):
                access = "".join(["r" if user.can_read else "-", "w" if user.can_write else "-"])
                print(f"{user.username} {access}")
        elif args.action == 'create':
            self.deployer.create_user(args.cluster, CreateUserOptions(
                username=args.name,
                password=args.password,
                can_read=not args.no_read,
                can_write=args.can_write,
            ))
        else:
            self.deployer.delete_user(args.cluster, args.name)
        return 0

    def query(self, args) -> int:
        print(self.deployer.execute_query(args.cluster, args.statement))
        return 0

    def certificate(self, args) -> int:
        print(self.deployer.get_certificate(args.cluster))
        return 0

    def run(self, args) -> int:
        handlers = {
            'ps': self.list_clusters,
            'alloc': self.allocate,
            'rm': self.remove,
            'rm-all': self.remove_all,
            'cleanup': self.cleanup,
            'connstr': self.connstr,
            'chaos': self.chaos,
            'images': self.images,
            'buckets': self.buckets,
            'users': self.users,
            'query': self.query,
            'cert': self.certificate,
        }
        return handlers[args.command](args)


def _require_name(args, parser: argparse.ArgumentParser) -> None:
    if args.command in ('buckets', 'users') and args.action != 'list' and not args.name:
        parser.error(f"{args.command} {args.action} requires a name")
    if args.command == 'users' and args.action == 'create' and not args.password:
        parser.error("users create requires --password")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='dyncluster',
        description='dyncluster - Allocate ephemeral database clusters for testing',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Allocate a three node cluster that expires after two hours
  dyncluster alloc --version 7.2.0 --count 3 --expiry 2h

  # Allocate a cluster from a definition file
  dyncluster alloc --def-file cluster.yaml

  # Partition one node from its peers and heal it again
  dyncluster chaos block <cluster> node_2
  dyncluster chaos allow <cluster> node_2

  # Remove expired clusters
  dyncluster cleanup
        """
    )

    parser.add_argument('--version', action='version', version=f'dyncluster {__version__}')
    parser.add_argument('--config', type=str, help='Path to configuration file (YAML or JSON)')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    subparsers.add_parser('ps', help='List clusters')

    alloc_parser = subparsers.add_parser('alloc', help='Allocate a new cluster')
    alloc_parser.add_argument('--def-file', type=str, metavar='FILE', help='Path to cluster definition YAML file')
    alloc_parser.add_argument('--version', dest='version', type=str, help='Server version to deploy')
    alloc_parser.add_argument('--count', type=int, default=3, help='Number of nodes (default: 3)')
    alloc_parser.add_argument('--community', action='store_true', help='Use the community edition')
    alloc_parser.add_argument('--purpose', type=str, help='Free-form purpose recorded on the nodes')
    alloc_parser.add_argument('--expiry', type=str, help='Lifetime such as 1h or 90m')

    rm_parser = subparsers.add_parser('rm', help='Remove a cluster')
    rm_parser.add_argument('cluster', help='Cluster id or unique prefix')

    subparsers.add_parser('rm-all', help='Remove all clusters')
    subparsers.add_parser('cleanup', help='Remove expired clusters')

    connstr_parser = subparsers.add_parser('connstr', help='Print the connection string of a cluster')
    connstr_parser.add_argument('cluster', help='Cluster id or unique prefix')

    chaos_parser = subparsers.add_parser('chaos', help='Block or allow peer traffic for a node')
    chaos_parser.add_argument('action', choices=['block', 'allow'])
    chaos_parser.add_argument('cluster', help='Cluster id or unique prefix')
    chaos_parser.add_argument('node', help='Node id, node name or container id prefix')

    images_parser = subparsers.add_parser('images', help='List locally available images')
    images_parser.add_argument('--version', dest='version', type=str, help='Only show images of this version')

    buckets_parser = subparsers.add_parser('buckets', help='Manage buckets')
    buckets_parser.add_argument('action', choices=['list', 'create', 'delete'])
    buckets_parser.add_argument('cluster', help='Cluster id or unique prefix')
    buckets_parser.add_argument('name', nargs='?', help='Bucket name')
    buckets_parser.add_argument('--ram-quota', type=int, default=100, help='Bucket RAM quota in MB (default: 100)')

    users_parser = subparsers.add_parser('users', help='Manage users')
    users_parser.add_argument('action', choices=['list', 'create', 'delete'])
    users_parser.add_argument('cluster', help='Cluster id or unique prefix')
    users_parser.add_argument('name', nargs='?', help='Username')
    users_parser.add_argument('--password', type=str, help='Password for a new user')
    users_parser.add_argument('--can-write', action='store_true', help='Grant write access')
    users_parser.add_argument('--no-read', action='store_true', help='Do not grant read access')

    query_parser = subparsers.add_parser('query', help='Execute a query statement')
    query_parser.add_argument('cluster', help='Cluster id or unique prefix')
    query_parser.add_argument('statement', help='Query statement')

    cert_parser = subparsers.add_parser('cert', help='Print the cluster certificate')
    cert_parser.add_argument('cluster', help='Cluster id or unique prefix')

    return parser


def main(argv=None):
    """Main entry point for CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if not args.command:
        print("Error: No command specified\n")
        parser.print_help()
        return 1

    _require_name(args, parser)

    try:
        cli = DynClusterCLI(config=load_config(args.config))
        return cli.run(args)
    except KeyboardInterrupt:
        print("\n\ndyncluster was interrupted by user")
        return 130
    except (DynClusterError, docker.errors.DockerException, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        if args.verbose:
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
