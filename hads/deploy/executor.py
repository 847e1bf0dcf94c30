"""
Remote command execution over an existing SSH session
"""
import codecs
import socket
import time
import paramiko
from hads.deploy.ssh import is_session_connected
from hads.exceptions import CommandFailedError, HostConnectionError
from hads.models import CommandOutcome, ConnectionStatus
from hads.utils.logger import setup_logger, mask_command

logger = setup_logger(__name__)

POLL_INTERVAL = 0.1
BUFFER_SIZE = 4096

TRANSPORT_ERRORS = (paramiko.SSHException, socket.error, EOFError)


def _peer_address(ssh):
    transport = ssh.get_transport() if ssh is not None else None
    if transport is None:
        return None
    try:
        return transport.getpeername()[0]
    except (OSError, IndexError, TypeError):
        return None


def _check_session(ssh, command):
    if not is_session_connected(ssh):
        raise HostConnectionError(
            "SSH session is not connected",
            ConnectionStatus.UNKNOWN_ERROR, _peer_address(ssh))
    if command is None or not command.strip():
        raise ValueError("Command must not be empty")


class _LineSplitter:
    """Decodes a byte stream incrementally and emits whole lines"""

    def __init__(self, callback=None):
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._callback = callback
        self._pending = ''
        self._chunks = []

    def feed(self, data, final=False):
        text = self._decoder.decode(data, final=final)
        if not text:
            return
        self._chunks.append(text)
        self._pending += text
        *lines, self._pending = self._pending.split('\n')
        for line in lines:
            self._emit(line.rstrip('\r'))

    def close(self):
        self.feed(b'', final=True)
        if self._pending:
            self._emit(self._pending.rstrip('\r'))
            self._pending = ''

    def _emit(self, line):
        if self._callback is not None:
            self._callback(line)

    @property
    def text(self):
        return ''.join(self._chunks)


def execute_buffered(ssh, command, timeout=None):
    """
    Execute command on remote host and wait for all output

    Args:
        ssh: Connected SSH client
        command: Command to execute
        timeout: Channel timeout in seconds (optional)

    Raises:
        HostConnectionError: Session disconnected or transport fault
        ValueError: Empty command

    Returns:
        Trimmed stdout, or trimmed stderr when stdout is empty
    """
    _check_session(ssh, command)
    address = _peer_address(ssh)
    logger.debug(f"Executing: {mask_command(command)}")

    try:
        stdin, stdout, stderr = ssh.exec_command(command, timeout=timeout)
        output = stdout.read().decode('utf-8', errors='replace')
        error = stderr.read().decode('utf-8', errors='replace')
        exit_code = stdout.channel.recv_exit_status()
    except TRANSPORT_ERRORS as e:
        raise HostConnectionError(
            f"Remote command failed: {e}",
            ConnectionStatus.UNKNOWN_ERROR, address) from e

    logger.debug(f"Command exit status {exit_code}: {mask_command(command)}")
    if exit_code != 0 and error.strip():
        logger.warning(f"Command wrote to stderr: {error.strip()}")

    result = output.strip()
    if not result and error.strip():
        result = error.strip()
    return result


def execute_streaming(ssh, command, on_line=None, on_error_line=None,
                      poll_interval=POLL_INTERVAL, timeout=None):
    """
    Execute command and deliver its output line by line as it arrives

    A nonzero exit status is returned in the outcome, not raised.

    Args:
        ssh: Connected SSH client
        command: Command to execute
        on_line: Called with each stdout line
        on_error_line: Called with each stderr line
        poll_interval: Seconds to sleep between polls while the command runs
        timeout: Overall limit in seconds (optional)

    Raises:
        HostConnectionError: Session disconnected, transport fault or timeout
        ValueError: Empty command

    Returns:
        CommandOutcome
    """
    _check_session(ssh, command)
    address = _peer_address(ssh)
    logger.info(f"Executing (streaming): {mask_command(command)}")

    stdout = _LineSplitter(on_line)
    stderr = _LineSplitter(on_error_line)
    start = time.monotonic()
    channel = None

    try:
        channel = ssh.get_transport().open_session()
        channel.exec_command(command)

        while True:
            while channel.recv_ready():
                data = channel.recv(BUFFER_SIZE)
                if not data:
                    break
                stdout.feed(data)

            while channel.recv_stderr_ready():
                data = channel.recv_stderr(BUFFER_SIZE)
                if not data:
                    break
                stderr.feed(data)

            if channel.exit_status_ready():
                # Keep draining whatever arrived together with the exit status
                if channel.recv_ready() or channel.recv_stderr_ready():
                    continue
                break

            if timeout is not None and time.monotonic() - start > timeout:
                raise HostConnectionError(
                    f"Command timed out after {timeout}s: {mask_command(command)}",
                    ConnectionStatus.TIMEOUT, address)

            time.sleep(poll_interval)

        exit_code = channel.recv_exit_status()
    except TRANSPORT_ERRORS as e:
        raise HostConnectionError(
            f"Remote command failed: {e}",
            ConnectionStatus.UNKNOWN_ERROR, address) from e
    finally:
        if channel is not None:
            channel.close()

    stdout.close()
    stderr.close()
    duration = time.monotonic() - start

    logger.info(f"Command finished with exit code {exit_code} in {duration:.2f}s")
    return CommandOutcome(
        command=command,
        exit_code=exit_code,
        stdout=stdout.text,
        stderr=stderr.text,
        duration=duration
    )


def execute_sequence(ssh, commands, on_line=None, on_error_line=None):
    """
    Run commands in order, stopping at the first failure

    A transport fault ends the sequence and is recorded as a failed outcome
    with exit code -1.

    Args:
        ssh: Connected SSH client
        commands: Iterable of command strings
        on_line: Called with each stdout line of every command
        on_error_line: Called with each stderr line of every command

    Returns:
        List of CommandOutcome, the last one failed if the sequence stopped early
    """
    commands = list(commands)
    logger.info(f"Executing {len(commands)} command(s)")

    outcomes = []
    for command in commands:
        start = time.monotonic()
        try:
            outcome = execute_streaming(ssh, command, on_line, on_error_line)
        except HostConnectionError as e:
            logger.error(f"Command aborted by transport fault: {e}")
            if on_error_line is not None:
                on_error_line(f"Command execution error: {e}")
            outcome = CommandOutcome(command, -1, '', str(e), time.monotonic() - start)

        outcomes.append(outcome)
        if not outcome.success:
            logger.warning(f"Command failed, skipping remaining commands: {mask_command(command)}")
            break

    return outcomes


def run_checked(ssh, commands, on_line=None, on_error_line=None, address=None):
    """
    Run a command sequence and raise if any command failed

    Raises:
        CommandFailedError: Carrying the failing outcome

    Returns:
        List of CommandOutcome
    """
    if isinstance(commands, str):
        commands = [commands]
    outcomes = execute_sequence(ssh, commands, on_line, on_error_line)
    if outcomes and not outcomes[-1].success:
        raise CommandFailedError(address or _peer_address(ssh), outcomes[-1])
    return outcomes
