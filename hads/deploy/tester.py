"""
Layered SSH connection diagnostics
"""
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from tqdm import tqdm
from hads.deploy.executor import execute_buffered
from hads.deploy.ssh import classify_connection_error
from hads.exceptions import HostConnectionError, ValidationError
from hads.models import ConnectionOutcome, ConnectionStatus
from hads.utils.logger import setup_logger
from hads.utils.network import is_reachable, is_port_open

logger = setup_logger(__name__)

PROBE_TIMEOUT = 5
TEST_MARKER = 'connection_test'

UNREACHABLE_MESSAGE = "Network unreachable, check the IP address and network configuration"
SSH_DOWN_MESSAGE = "SSH service not started, start sshd on the target"
AUTH_FAILED_MESSAGE = "Authentication failed, check the username and password"
TIMEOUT_MESSAGE = "Connection timed out, check the network or increase the timeout"
INVALID_HOST_MESSAGE = "Invalid host settings, check the IP address, username and password"


class ConnectionTester:
    """
    Diagnoses each host in order: network, SSH port, authentication, then a
    functional probe. The first failing layer decides the outcome.

    A successful test leaves the session cached in the session manager so the
    following operations reuse it.
    """

    def __init__(self, session_manager, probe_timeout=PROBE_TIMEOUT,
                 reachability=is_reachable, port_check=is_port_open):
        self.session_manager = session_manager
        self.probe_timeout = probe_timeout
        self._reachability = reachability
        self._port_check = port_check

    def test_connection(self, target):
        """
        Test one host

        Args:
            target: HostTarget

        Returns:
            ConnectionOutcome
        """
        address = target.address
        start = time.monotonic()
        logger.info(f"Testing connection: {target.label} ({address})")

        if not self._reachability(address, self.probe_timeout):
            logger.warning(f"{target.label} ({address}) network unreachable")
            return ConnectionOutcome.failure(
                target.index, address, ConnectionStatus.NETWORK_UNREACHABLE, UNREACHABLE_MESSAGE)

        if not self._port_check(address, target.ssh_port, self.probe_timeout):
            logger.warning(f"{target.label} ({address}) SSH port {target.ssh_port} closed")
            return ConnectionOutcome.failure(
                target.index, address, ConnectionStatus.SSH_SERVICE_DOWN, SSH_DOWN_MESSAGE)

        try:
            ssh = self.session_manager.get_or_create_session(target)
        except HostConnectionError as e:
            status = classify_connection_error(e)
            logger.warning(f"{target.label} ({address}) session failed: {status.description}")
            return ConnectionOutcome.failure(
                target.index, address, status, self._message_for(status), str(e))
        except ValidationError as e:
            logger.warning(f"{target.label} ({address}) invalid host settings: {e}")
            return ConnectionOutcome.failure(
                target.index, address, ConnectionStatus.UNKNOWN_ERROR,
                INVALID_HOST_MESSAGE, str(e))

        try:
            output = execute_buffered(ssh, f"echo '{TEST_MARKER}'", timeout=self.probe_timeout)
        except HostConnectionError as e:
            output = ''
            logger.warning(f"{target.label} ({address}) test command error: {e}")

        if TEST_MARKER not in output:
            self.session_manager.close_session(address)
            return ConnectionOutcome.failure(
                target.index, address, ConnectionStatus.UNKNOWN_ERROR,
                error_detail="test command execution failed")

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"✓ {target.label} ({address}) connected in {latency_ms}ms")
        return ConnectionOutcome.success(target.index, address, latency_ms)

    def test_all(self, targets, concurrent=True, show_progress=False):
        """
        Test every host; a failing host never stops the others

        Args:
            targets: List of HostTarget
            concurrent: Test hosts in parallel, one worker per host
            show_progress: Show a tqdm bar

        Returns:
            List of ConnectionOutcome in the order of targets
        """
        targets = list(targets)
        if not targets:
            return []

        logger.info(f"Testing {len(targets)} host(s) ({'concurrent' if concurrent else 'sequential'})")

        if not concurrent:
            outcomes = []
            for target in tqdm(targets, desc="Testing connections", unit="host",
                               disable=not show_progress):
                outcomes.append(self.test_connection(target))
            return outcomes

        results = {}
        with ThreadPoolExecutor(max_workers=len(targets)) as executor:
            futures = {executor.submit(self.test_connection, target): position
                       for position, target in enumerate(targets)}

            with tqdm(total=len(targets), desc="Testing connections", unit="host",
                      disable=not show_progress) as pbar:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    pbar.update(1)

        return [results[position] for position in range(len(targets))]

    @staticmethod
    def summarize(outcomes):
        """Aggregate tally, e.g. 'Connection test finished: 2 succeeded, 1 failed'"""
        succeeded = sum(1 for outcome in outcomes if outcome.is_success)
        failed = len(outcomes) - succeeded
        if failed == 0 and outcomes:
            return f"All hosts connected ({succeeded}/{len(outcomes)})"
        return f"Connection test finished: {succeeded} succeeded, {failed} failed"

    @staticmethod
    def _message_for(status):
        if status is ConnectionStatus.AUTH_FAILED:
            return AUTH_FAILED_MESSAGE
        if status is ConnectionStatus.TIMEOUT:
            return TIMEOUT_MESSAGE
        return status.description
