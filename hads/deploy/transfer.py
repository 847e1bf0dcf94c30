"""
SFTP file transfer to one or many hosts
"""
import os
import posixpath
import socket
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
import paramiko
from tqdm import tqdm
from hads.deploy.ssh import is_session_connected
from hads.exceptions import HadsError, HostConnectionError
from hads.models import ConnectionStatus, TransferOutcome
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

SFTP_ERRORS = (IOError, paramiko.SSHException, socket.error, EOFError)


class TransferProgress:
    """Progress sink for a single upload. The base class ignores every event."""

    def on_start(self, source, destination, total):
        pass

    def on_progress(self, transferred, total, percent):
        pass

    def on_complete(self):
        pass

    def on_error(self, message):
        pass


class TqdmProgress(TransferProgress):
    """Renders one upload as a tqdm byte counter"""

    def __init__(self, desc=None, position=None, leave=True):
        self._desc = desc
        self._position = position
        self._leave = leave
        self._bar = None
        self._last = 0

    def on_start(self, source, destination, total):
        self._bar = tqdm(
            total=total,
            desc=self._desc or os.path.basename(source),
            unit='B',
            unit_scale=True,
            unit_divisor=1024,
            position=self._position,
            leave=self._leave
        )
        self._last = 0

    def on_progress(self, transferred, total, percent):
        if self._bar is None:
            return
        self._bar.update(transferred - self._last)
        self._last = transferred

    def on_complete(self):
        self._close()

    def on_error(self, message):
        if self._bar is not None:
            self._bar.set_postfix_str('failed')
        self._close()

    def _close(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None


def ensure_remote_dir(sftp, remote_dir):
    """
    Create remote directory, walking each path component

    Args:
        sftp: Open SFTP client
        remote_dir: Absolute or relative remote directory
    """
    if not remote_dir or remote_dir == '/':
        return

    current = '/' if remote_dir.startswith('/') else ''
    for part in remote_dir.strip('/').split('/'):
        if not part:
            continue
        current = posixpath.join(current, part) if current else part
        try:
            sftp.stat(current)
        except IOError:
            logger.debug(f"Creating remote directory: {current}")
            sftp.mkdir(current)


def _put_file(ssh, local_path, remote_dir, progress):
    """
    Upload a file and report (remote_path, size, error); error is None on success
    """
    error = None
    if not local_path or not os.path.isfile(local_path):
        error = f"Local file does not exist: {local_path}"
    elif not os.access(local_path, os.R_OK):
        error = f"Local file is not readable: {local_path}"
    elif not is_session_connected(ssh):
        error = "SSH session is not connected"
    if error:
        progress.on_error(error)
        return None, 0, error

    size = os.path.getsize(local_path)
    remote_path = posixpath.join(remote_dir, os.path.basename(local_path))
    progress.on_start(local_path, remote_path, size)

    def progress_callback(transferred, total):
        percent = (transferred / total) * 100 if total else 100.0
        progress.on_progress(transferred, total, percent)

    sftp = None
    try:
        sftp = ssh.open_sftp()
        ensure_remote_dir(sftp, remote_dir)
        sftp.put(local_path, remote_path, callback=progress_callback)
    except SFTP_ERRORS as e:
        error = f"Upload to {remote_path} failed: {e}"
        progress.on_error(error)
        return None, size, error
    finally:
        if sftp is not None:
            sftp.close()

    progress.on_complete()
    return remote_path, size, None


def upload_file(ssh, local_path, remote_dir, progress=None):
    """
    Upload file to remote directory, keeping its base name

    Args:
        ssh: Connected SSH client
        local_path: Local file path
        remote_dir: Remote directory (created if missing)
        progress: TransferProgress sink (optional)

    Returns:
        True if successful
    """
    progress = progress or TransferProgress()
    logger.info(f"Uploading {local_path} -> {remote_dir}")

    remote_path, size, error = _put_file(ssh, local_path, remote_dir, progress)
    if error:
        logger.error(error)
        return False

    logger.info(f"✓ File uploaded: {remote_path} ({size} bytes)")
    return True


def _resolve_local_path(local_path, target):
    if isinstance(local_path, dict):
        return local_path.get(target.index)
    return local_path


def upload_to_all_hosts(session_manager, targets, local_path, remote_dir, show_progress=True):
    """
    Upload a file to every host concurrently

    Args:
        session_manager: SessionManager providing one session per host
        targets: List of HostTarget
        local_path: Local file path, or {host_index: path} for per-host files
        remote_dir: Remote directory
        show_progress: Show aggregate tqdm bar

    Returns:
        List of TransferOutcome in the order of targets
    """
    targets = list(targets)
    if not targets:
        return []

    logger.info(f"Uploading to {len(targets)} host(s) -> {remote_dir}")

    def upload_to_host(target):
        source = _resolve_local_path(local_path, target)
        start = time.monotonic()

        try:
            ssh = session_manager.get_or_create_session(target)
        except HadsError as e:
            return TransferOutcome.failed(
                target.index, target.address, source, f"Connection failed: {e}",
                time.monotonic() - start)

        remote_path, size, error = _put_file(ssh, source, remote_dir, TransferProgress())
        duration = time.monotonic() - start
        if error:
            return TransferOutcome.failed(target.index, target.address, source, error, duration)
        return TransferOutcome.succeeded(
            target.index, target.address, source, remote_path, size, duration)

    results = {}
    with ThreadPoolExecutor(max_workers=len(targets)) as executor:
        futures = {executor.submit(upload_to_host, target): position
                   for position, target in enumerate(targets)}

        with tqdm(total=len(targets), desc="Uploading", unit="host",
                  disable=not show_progress) as pbar:
            for future in as_completed(futures):
                position = futures[future]
                target = targets[position]
                outcome = future.result()
                results[position] = outcome
                if outcome.success:
                    logger.info(f"✓ [{target.label}] {target.address} upload completed "
                                f"in {outcome.duration:.1f}s")
                else:
                    logger.error(f"[{target.label}] {target.address} upload failed: {outcome.error}")
                pbar.update(1)

    outcomes = [results[position] for position in range(len(targets))]
    succeeded = sum(1 for outcome in outcomes if outcome.success)
    logger.info(f"Upload finished: {succeeded}/{len(outcomes)} succeeded")
    return outcomes


def verify_remote_file(ssh, remote_path):
    """Check that a remote path exists (symlinks are not followed)"""
    sftp = None
    try:
        sftp = ssh.open_sftp()
        sftp.lstat(remote_path)
        return True
    except SFTP_ERRORS as e:
        logger.debug(f"Remote file not found or not accessible: {remote_path} ({e})")
        return False
    finally:
        if sftp is not None:
            sftp.close()


def write_remote_file(ssh, remote_path, content):
    """
    Write text content to a remote file, replacing it

    Args:
        ssh: Connected SSH client
        remote_path: Remote file path
        content: File content

    Raises:
        HostConnectionError: If the file cannot be written
    """
    sftp = None
    try:
        sftp = ssh.open_sftp()
        with sftp.file(remote_path, 'w') as f:
            f.write(content)
    except SFTP_ERRORS as e:
        raise HostConnectionError(
            f"Failed to write {remote_path}: {e}", ConnectionStatus.UNKNOWN_ERROR) from e
    finally:
        if sftp is not None:
            sftp.close()

    logger.debug(f"✓ Remote file written: {remote_path}")
