from .polling import wait_until
from .docker_exec import exec_command, get_container

__all__ = ['wait_until', 'exec_command', 'get_container']
