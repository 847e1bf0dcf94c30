"""
Network diagnostics independent of SSH
"""
import shutil
import socket
import subprocess
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

ECHO_PORT = 7


def _tcp_echo_probe(address, timeout):
    # A refused connection still proves the host answered
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect((address, ECHO_PORT))
        return True
    except ConnectionRefusedError:
        return True
    except OSError:
        return False
    finally:
        sock.close()


def is_reachable(address, timeout=5):
    """
    Check whether a host answers at the network layer

    Sends one ICMP echo through the system ping binary. Hosts without ping
    fall back to a TCP probe of the echo port.

    Args:
        address: Host address
        timeout: Timeout in seconds

    Returns:
        True if the host answered
    """
    if not address or not address.strip():
        logger.warning("Empty address given to reachability check")
        return False

    wait = max(1, int(round(timeout)))

    if shutil.which('ping') is None:
        reachable = _tcp_echo_probe(address, timeout)
        logger.debug(f"{address} reachable (tcp probe): {reachable}")
        return reachable

    try:
        result = subprocess.run(
            ['ping', '-c', '1', '-W', str(wait), address],
            capture_output=True,
            timeout=timeout + 2
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"Reachability check for {address} failed: {e}")
        return False

    reachable = result.returncode == 0
    logger.debug(f"{address} reachable: {reachable}")
    return reachable


def is_port_open(address, port, timeout=5):
    """
    Check if a TCP port accepts connections

    Args:
        address: Host address
        port: Port number
        timeout: Connection timeout in seconds

    Returns:
        True if the port is open
    """
    if not address or not address.strip():
        logger.warning("Empty address given to port check")
        return False

    if not isinstance(port, int) or port < 1 or port > 65535:
        logger.warning(f"Invalid port number: {port}")
        return False

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        result = sock.connect_ex((address, port))
    except OSError as e:
        logger.debug(f"{address}:{port} not open: {e}")
        return False
    finally:
        sock.close()

    if result == 0:
        logger.debug(f"{address}:{port} is open")
        return True

    logger.debug(f"{address}:{port} not open (errno {result})")
    return False
