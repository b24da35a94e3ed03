"""
Readiness checks against a node's management endpoint
"""
import logging
import threading
from typing import Optional

import requests

from ..utils.polling import wait_until


class NodeManager:
    """Talks to the management API of a single, possibly unconfigured, node"""

    def __init__(self, endpoint: str, session: Optional[requests.Session] = None,
                 interval: float = 1.0, timeout: float = 300.0,
                 request_timeout: float = 5.0, logger: Optional[logging.Logger] = None):
        self.endpoint = endpoint.rstrip("/")
        self.session = session or requests.Session()
        self.interval = interval
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(__name__)

    def is_online(self) -> bool:
        """Check whether the management service answers /pools"""
        try:
            resp = self.session.get(f"{self.endpoint}/pools", timeout=self.request_timeout)
        except requests.RequestException as e:
            self.logger.debug(f"{self.endpoint} not reachable yet: {e}")
            return False

        if resp.status_code != 200:
            self.logger.debug(f"{self.endpoint} answered {resp.status_code}")
            return False
        return True

    def wait_for_online(self, cancel: Optional[threading.Event] = None) -> None:
        """Block until the node is online, raising CancellationError on timeout or cancel"""
        self.logger.debug(f"Waiting for {self.endpoint} to come online (timeout: {self.timeout:.2f}s)")
        wait_until(
            self.is_online,
            interval=self.interval,
            timeout=self.timeout,
            cancel=cancel,
            description=f"{self.endpoint} to come online",
        )
        self.logger.debug(f"{self.endpoint} is online")
