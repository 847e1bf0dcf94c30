"""
SSH connection and session management
"""
import socket
import threading
import time
import paramiko
from hads.exceptions import HostConnectionError, ValidationError
from hads.models import ConnectionStatus
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

KEEPALIVE_INTERVAL = 30
MAX_RECONNECT_ATTEMPTS = 3
RECONNECT_DELAY = 2


def classify_connection_error(error):
    """
    Map a connection failure to a ConnectionStatus

    Args:
        error: Exception raised while connecting

    Returns:
        ConnectionStatus
    """
    if isinstance(error, HostConnectionError) and error.status is not None:
        return error.status
    if isinstance(error, paramiko.AuthenticationException):
        return ConnectionStatus.AUTH_FAILED
    if isinstance(error, socket.timeout):
        return ConnectionStatus.TIMEOUT

    text = str(error).lower()
    if 'auth' in text or 'password' in text:
        return ConnectionStatus.AUTH_FAILED
    if 'timeout' in text or 'timed out' in text:
        return ConnectionStatus.TIMEOUT
    return ConnectionStatus.UNKNOWN_ERROR


def connect_ssh(target):
    """
    Create an authenticated SSH connection

    Password authentication only; unknown host keys are accepted.

    Args:
        target: HostTarget

    Raises:
        HostConnectionError: If the connection or authentication fails

    Returns:
        Connected paramiko.SSHClient
    """
    host = target.ip
    if not host or not host.strip():
        raise ValidationError("Host address must not be empty", 'ip', host)
    if not target.username or not target.username.strip():
        raise ValidationError("Username must not be empty", 'username', target.username)
    if target.password is None:
        raise ValidationError("Password must not be empty", 'password', None)

    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    try:
        logger.debug(f"Connecting to {target.username}@{host}:{target.ssh_port}")
        ssh.connect(
            hostname=host,
            port=target.ssh_port,
            username=target.username,
            password=target.password,
            timeout=target.timeout,
            banner_timeout=target.timeout,
            auth_timeout=target.timeout,
            allow_agent=False,
            look_for_keys=False
        )

        # Keep long provisioning commands from dropping the connection
        transport = ssh.get_transport()
        if transport:
            transport.set_keepalive(KEEPALIVE_INTERVAL)

        return ssh
    except paramiko.AuthenticationException as e:
        ssh.close()
        raise HostConnectionError(
            f"SSH authentication failed to {host}: {e}",
            ConnectionStatus.AUTH_FAILED, host) from e
    except (paramiko.SSHException, OSError, EOFError) as e:
        ssh.close()
        raise HostConnectionError(
            f"SSH connection failed to {host}: {e}",
            classify_connection_error(e), host) from e


def is_session_connected(ssh):
    """Local liveness check: the transport exists and is active"""
    if ssh is None:
        return False
    transport = ssh.get_transport()
    return transport is not None and transport.is_active()


def close_client(ssh):
    if ssh is None:
        return
    try:
        ssh.close()
    except (paramiko.SSHException, OSError, EOFError) as e:
        logger.warning(f"Error while closing SSH session: {e}")


class SessionManager:
    """
    Owns at most one SSH session per host address

    Safe for concurrent use: the cache is guarded by a lock and session
    creation is serialized per address so two workers never open parallel
    sessions to the same host.
    """

    def __init__(self, connector=None):
        """
        Args:
            connector: Callable taking a HostTarget and returning a connected
                client (defaults to connect_ssh)
        """
        self._connector = connector or connect_ssh
        self._sessions = {}
        self._lock = threading.Lock()
        self._address_locks = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close_all()
        return False

    def _address_lock(self, address):
        with self._lock:
            return self._address_locks.setdefault(address, threading.Lock())

    def _cached(self, address):
        with self._lock:
            return self._sessions.get(address)

    def _evict(self, address):
        with self._lock:
            return self._sessions.pop(address, None)

    def _open(self, target):
        try:
            ssh = self._connector(target)
        except HostConnectionError:
            raise
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise HostConnectionError(
                f"Failed to create SSH session: {e}",
                classify_connection_error(e), target.address) from e

        with self._lock:
            self._sessions[target.address] = ssh
        return ssh

    def get_or_create_session(self, target):
        """
        Return the cached live session for a host or open a new one

        Args:
            target: HostTarget

        Raises:
            HostConnectionError: If a new session cannot be established
            ValidationError: If the target has no address or username

        Returns:
            Connected paramiko.SSHClient
        """
        address = target.address

        with self._address_lock(address):
            ssh = self._cached(address)
            if ssh is not None:
                if is_session_connected(ssh):
                    logger.debug(f"Using cached SSH session: {address}")
                    return ssh
                logger.info(f"Cached SSH session is stale, reconnecting: {address}")
                self._evict(address)
                close_client(ssh)

            logger.info(f"Creating SSH session: {address}")
            ssh = self._open(target)
            logger.info(f"✓ SSH session established: {address}")
            return ssh

    def close_session(self, address):
        ssh = self._evict(address)
        if ssh is None:
            logger.debug(f"No active SSH session for {address}")
            return
        close_client(ssh)
        logger.info(f"SSH session closed: {address}")

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()

        if sessions:
            logger.info(f"Closing {len(sessions)} SSH session(s)")
        for address, ssh in sessions:
            close_client(ssh)
            logger.debug(f"SSH session closed: {address}")

    def reconnect(self, target, max_attempts=MAX_RECONNECT_ATTEMPTS, retry_delay=RECONNECT_DELAY):
        """
        Drop any cached session and retry creating a new one

        Only used as an explicit recovery action.

        Args:
            target: HostTarget
            max_attempts: Maximum connection attempts
            retry_delay: Seconds to wait between attempts

        Raises:
            HostConnectionError: When every attempt failed

        Returns:
            Connected paramiko.SSHClient
        """
        address = target.address
        logger.info(f"Reconnecting to {address} (max {max_attempts} attempts)")

        last_error = None
        with self._address_lock(address):
            close_client(self._evict(address))

            for attempt in range(1, max_attempts + 1):
                try:
                    ssh = self._open(target)
                    logger.info(f"✓ Reconnected to {address} on attempt {attempt}")
                    return ssh
                except HostConnectionError as e:
                    last_error = e
                    logger.warning(f"Reconnect attempt {attempt}/{max_attempts} to {address} failed: {e}")
                    if attempt < max_attempts:
                        time.sleep(retry_delay)

        logger.error(f"Giving up on {address} after {max_attempts} reconnect attempts")
        status = last_error.status if last_error else ConnectionStatus.UNKNOWN_ERROR
        raise HostConnectionError(
            f"Reconnect to {address} failed after {max_attempts} attempts: {last_error}",
            status, address)

    def try_reconnect(self, target):
        try:
            ssh = self.reconnect(target)
        except HostConnectionError:
            return False
        return is_session_connected(ssh)

    def is_session_active(self, address):
        return is_session_connected(self._cached(address))

    def active_session_count(self):
        with self._lock:
            sessions = list(self._sessions.values())
        return sum(1 for ssh in sessions if is_session_connected(ssh))
