"""
Tests for the management API clients
"""
import threading
import pytest
from unittest.mock import Mock

import requests

from dyncluster.cluster_control import ClusterManager, NodeManager
from dyncluster.errors import CancellationError, ClusterControlError
from dyncluster.models import CreateBucketOptions, CreateUserOptions

ENDPOINT = "http://172.28.0.2:8091"


def make_response(status_code=200, json_data=None, text=""):
    resp = Mock(status_code=status_code, text=text)
    resp.json.return_value = json_data
    return resp


@pytest.fixture
def session():
    """Mock requests session answering 200 by default"""
    mock_session = Mock()
    mock_session.get.return_value = make_response()
    mock_session.request.return_value = make_response()
    return mock_session


@pytest.fixture
def manager(session):
    """ClusterManager for the first node"""
    return ClusterManager(ENDPOINT, "Administrator", "password", session=session)


def sent_data(session, index=-1):
    return session.request.call_args_list[index][1]["data"]


class TestNodeManager:
    """Test readiness probing"""

    def test_online(self, session):
        """Test a 200 from /pools means online"""
        node = NodeManager(ENDPOINT, session=session)

        assert node.is_online() is True
        session.get.assert_called_once_with(f"{ENDPOINT}/pools", timeout=5.0)

    def test_not_ready_status(self, session):
        """Test a non-200 answer means not online yet"""
        session.get.return_value = make_response(503)

        assert NodeManager(ENDPOINT, session=session).is_online() is False

    def test_connection_refused(self, session):
        """Test connection errors mean not online yet"""
        session.get.side_effect = requests.ConnectionError("refused")

        assert NodeManager(ENDPOINT, session=session).is_online() is False

    def test_wait_for_online(self, session):
        """Test waiting polls until the node answers"""
        session.get.side_effect = [requests.ConnectionError("refused"), make_response(503), make_response(200)]
        node = NodeManager(ENDPOINT, session=session, interval=0.001, timeout=5.0)

        node.wait_for_online()

        assert session.get.call_count == 3

    def test_wait_for_online_timeout(self, session):
        """Test a node that never answers times out"""
        session.get.side_effect = requests.ConnectionError("refused")
        node = NodeManager(ENDPOINT, session=session, interval=0.01, timeout=0.05)

        with pytest.raises(CancellationError):
            node.wait_for_online()

    def test_wait_for_online_cancelled(self, session):
        """Test a cancelled wait raises CancellationError"""
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(CancellationError):
            NodeManager(ENDPOINT, session=session).wait_for_online(cancel)


class TestClusterFormation:
    """Test cluster initialisation and rebalancing"""

    def test_init_cluster(self, manager, session):
        """Test the first node is initialised with services and quotas"""
        manager.init_cluster("172.28.0.2", ["kv", "n1ql"], memory_quota_mb=512, index_memory_quota_mb=256)

        args, kwargs = session.request.call_args
        assert args == ("POST", f"{ENDPOINT}/clusterInit")
        assert kwargs["auth"] == ("Administrator", "password")
        assert kwargs["data"]["services"] == "kv,n1ql"
        assert kwargs["data"]["memoryQuota"] == 512
        assert kwargs["data"]["hostname"] == "172.28.0.2"

    def test_add_node(self, manager, session):
        """Test adding a node posts its address and services"""
        manager.add_node("172.28.0.3", ["kv"])

        assert session.request.call_args[0] == ("POST", f"{ENDPOINT}/controller/addNode")
        assert sent_data(session) == {
            "hostname": "172.28.0.3", "user": "Administrator", "password": "password", "services": "kv",
        }

    def test_rebalance_with_ejection(self, manager, session):
        """Test rebalance lists known nodes and maps ejected addresses to node names"""
        pool = make_response(json_data={"nodes": [
            {"hostname": "172.28.0.2:8091", "otpNode": "ns_1@172.28.0.2"},
            {"hostname": "172.28.0.3:8091", "otpNode": "ns_1@172.28.0.3"},
        ]})
        session.request.side_effect = [pool, pool, make_response()]

        manager.rebalance(ejected_hostnames=["172.28.0.3"])

        assert session.request.call_args[0] == ("POST", f"{ENDPOINT}/controller/rebalance")
        assert sent_data(session) == {
            "knownNodes": "ns_1@172.28.0.2,ns_1@172.28.0.3",
            "ejectedNodes": "ns_1@172.28.0.3",
        }

    def test_rebalance_unknown_node(self, manager, session):
        """Test ejecting a node outside the cluster fails"""
        session.request.return_value = make_response(json_data={"nodes": []})

        with pytest.raises(ClusterControlError):
            manager.rebalance(ejected_hostnames=["172.28.0.9"])

    def test_rebalance_progress(self, manager, session):
        """Test rebalance completion and failure reporting"""
        session.request.return_value = make_response(json_data={"status": "running"})
        assert manager.is_rebalance_complete() is False

        session.request.return_value = make_response(json_data={"status": "none"})
        assert manager.is_rebalance_complete() is True

        session.request.return_value = make_response(json_data={"status": "none", "errorMessage": "Rebalance failed"})
        with pytest.raises(ClusterControlError, match="Rebalance failed"):
            manager.is_rebalance_complete()

    def test_wait_for_rebalance(self, manager, session):
        """Test waiting polls progress until done"""
        session.request.side_effect = [
            make_response(json_data={"status": "running"}),
            make_response(json_data={"status": "none"}),
        ]

        manager.wait_for_rebalance(interval=0.001, timeout=5.0)

        assert session.request.call_count == 2


class TestRequests:
    """Test request error handling"""

    def test_unexpected_status(self, manager, session):
        """Test non-success answers raise ClusterControlError with the status"""
        session.request.return_value = make_response(400, text='{"errors": {"name": "invalid"}}')

        with pytest.raises(ClusterControlError) as exc_info:
            manager.create_bucket(CreateBucketOptions(name="bad name"))

        assert exc_info.value.status_code == 400
        assert "invalid" in exc_info.value.body

    def test_connection_error(self, manager, session):
        """Test transport failures raise ClusterControlError"""
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ClusterControlError):
            manager.list_buckets()


class TestUsersAndBuckets:
    """Test user, bucket and collection management"""

    def test_list_users(self, manager, session):
        """Test roles are mapped to read and write access"""
        session.request.return_value = make_response(json_data=[
            {"id": "reader", "roles": [{"role": "data_reader", "bucket_name": "*"}]},
            {"id": "writer", "roles": [{"role": "data_reader"}, {"role": "data_writer"}]},
            {"id": "admin", "roles": [{"role": "admin"}]},
            {"id": "nobody", "roles": []},
        ])

        users = {user.username: (user.can_read, user.can_write) for user in manager.list_users()}

        assert users == {
            "reader": (True, False),
            "writer": (True, True),
            "admin": (True, True),
            "nobody": (False, False),
        }

    def test_create_user(self, manager, session):
        """Test a read-write user gets reader and writer roles"""
        manager.create_user(CreateUserOptions(username="app user", password="secret", can_write=True))

        assert session.request.call_args[0] == ("PUT", f"{ENDPOINT}/settings/rbac/users/local/app%20user")
        assert sent_data(session) == {"password": "secret", "roles": "data_reader[*],data_writer[*]"}

    def test_create_user_without_access(self, manager, session):
        """Test a user with neither read nor write access is rejected"""
        with pytest.raises(ClusterControlError):
            manager.create_user(CreateUserOptions(username="x", password="y", can_read=False))
        session.request.assert_not_called()

    def test_buckets(self, manager, session):
        """Test bucket listing, creation and deletion"""
        session.request.return_value = make_response(json_data=[{"name": "default"}, {"name": "travel-sample"}])
        assert [bucket.name for bucket in manager.list_buckets()] == ["default", "travel-sample"]

        session.request.return_value = make_response(202)
        manager.create_bucket(CreateBucketOptions(name="test", ram_quota_mb=256))
        assert sent_data(session)["ramQuotaMB"] == 256

        session.request.return_value = make_response()
        manager.delete_bucket("test")
        assert session.request.call_args[0] == ("DELETE", f"{ENDPOINT}/pools/default/buckets/test")

    def test_collections(self, manager, session):
        """Test the collection manifest is parsed into scopes"""
        session.request.return_value = make_response(json_data={"uid": "1", "scopes": [
            {"name": "_default", "collections": [{"name": "_default"}]},
            {"name": "inventory", "collections": [{"name": "airline"}, {"name": "route"}]},
        ]})

        scopes = manager.list_collections("travel")

        assert [scope.name for scope in scopes] == ["_default", "inventory"]
        assert [c.name for c in scopes[1].collections] == ["airline", "route"]

    def test_scope_and_collection_paths(self, manager, session):
        """Test scope and collection calls address the bucket manifest"""
        manager.create_scope("travel", "inventory")
        assert session.request.call_args[0] == ("POST", f"{ENDPOINT}/pools/default/buckets/travel/scopes")

        manager.create_collection("travel", "inventory", "airline")
        assert session.request.call_args[0] == (
            "POST", f"{ENDPOINT}/pools/default/buckets/travel/scopes/inventory/collections"
        )

        manager.delete_collection("travel", "inventory", "airline")
        assert session.request.call_args[0] == (
            "DELETE", f"{ENDPOINT}/pools/default/buckets/travel/scopes/inventory/collections/airline"
        )

        manager.delete_scope("travel", "inventory")
        assert session.request.call_args[0] == ("DELETE", f"{ENDPOINT}/pools/default/buckets/travel/scopes/inventory")

    def test_certificate(self, manager, session):
        """Test the certificate is returned as text"""
        session.request.return_value = make_response(text="-----BEGIN CERTIFICATE-----")

        assert manager.get_certificate() == "-----BEGIN CERTIFICATE-----"

    def test_execute_query(self, manager, session):
        """Test queries are sent to the query service port"""
        session.request.return_value = make_response(text='{"status": "success"}')

        assert manager.execute_query("SELECT 1") == '{"status": "success"}'
        assert session.request.call_args[0] == ("POST", "http://172.28.0.2:8093/query/service")
        assert sent_data(session) == {"statement": "SELECT 1"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
