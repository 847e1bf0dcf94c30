"""
Test SFTP file transfer
"""
import os
import pytest
from conftest import FakeSessionManager, FakeSFTP, FakeSSHClient, make_target
from hads.deploy.ssh import SessionManager, connect_ssh
from hads.deploy.transfer import (
    TransferProgress, ensure_remote_dir, upload_file, upload_to_all_hosts,
    verify_remote_file, write_remote_file
)
from hads.exceptions import HostConnectionError


class RecordingProgress(TransferProgress):
    def __init__(self):
        self.events = []

    def on_start(self, source, destination, total):
        self.events.append(('start', destination, total))

    def on_progress(self, transferred, total, percent):
        self.events.append(('progress', transferred, percent))

    def on_complete(self):
        self.events.append(('complete',))

    def on_error(self, message):
        self.events.append(('error', message))


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / 'hadoop-3.1.3.tar.gz'
    path.write_bytes(b'x' * 1000)
    return path


def test_upload_file_creates_dirs_and_reports_progress(archive):
    client = FakeSSHClient()
    progress = RecordingProgress()

    assert upload_file(client, str(archive), '/opt/software', progress)

    assert '/opt' in client.sftp.dirs
    assert '/opt/software' in client.sftp.dirs
    assert client.sftp.files['/opt/software/hadoop-3.1.3.tar.gz'] == b'x' * 1000
    assert progress.events[0] == ('start', '/opt/software/hadoop-3.1.3.tar.gz', 1000)
    assert ('progress', 1000, 100.0) in progress.events
    assert progress.events[-1] == ('complete',)


def test_upload_missing_file_fails(tmp_path):
    progress = RecordingProgress()

    assert not upload_file(FakeSSHClient(), str(tmp_path / 'missing.tar.gz'), '/tmp', progress)
    assert progress.events[0][0] == 'error'


def test_upload_transport_fault_reported(archive):
    client = FakeSSHClient(sftp=FakeSFTP(fail_put=True))
    progress = RecordingProgress()

    assert not upload_file(client, str(archive), '/tmp', progress)
    assert progress.events[-1][0] == 'error'


def test_ensure_remote_dir_walks_components():
    sftp = FakeSFTP()
    sftp.dirs.add('/opt')

    ensure_remote_dir(sftp, '/opt/module/hadoop/etc')

    assert {'/opt/module', '/opt/module/hadoop', '/opt/module/hadoop/etc'} <= sftp.dirs


def test_upload_to_all_hosts_with_one_unreadable_file(targets, tmp_path):
    files = {}
    for target in targets:
        path = tmp_path / f"pkg-{target.index}.tar.gz"
        path.write_bytes(b'data')
        files[target.index] = str(path)
    os.remove(files[2])

    outcomes = upload_to_all_hosts(FakeSessionManager(), targets, files, '/opt/software',
                                   show_progress=False)

    assert [outcome.host_index for outcome in outcomes] == [1, 2, 3]
    assert [outcome.success for outcome in outcomes] == [True, False, True]
    assert 'does not exist' in outcomes[1].error
    assert outcomes[0].remote_path == '/opt/software/pkg-1.tar.gz'
    assert outcomes[0].size == 4


def test_upload_to_all_hosts_connection_failure(targets, archive):
    sessions = FakeSessionManager(down={targets[0].address})

    outcomes = upload_to_all_hosts(sessions, targets, str(archive), '/tmp', show_progress=False)

    assert not outcomes[0].success
    assert 'Connection failed' in outcomes[0].error
    assert outcomes[1].success and outcomes[2].success


def test_upload_to_no_hosts():
    assert upload_to_all_hosts(FakeSessionManager(), [], 'x', '/tmp') == []


def test_verify_remote_file():
    client = FakeSSHClient(sftp=FakeSFTP(files={'/opt/software/jdk.tar.gz': b''}))

    assert verify_remote_file(client, '/opt/software/jdk.tar.gz')
    assert not verify_remote_file(client, '/opt/software/missing.tar.gz')


def test_write_remote_file():
    client = FakeSSHClient()

    write_remote_file(client, '/opt/module/hadoop/etc/hadoop/workers', 'hadoop101\n')

    assert client.sftp.files['/opt/module/hadoop/etc/hadoop/workers'] == b'hadoop101\n'


def test_write_remote_file_fault_raises():
    class BrokenSFTP(FakeSFTP):
        def file(self, path, mode='r'):
            raise PermissionError(13, 'Permission denied', path)

    with pytest.raises(HostConnectionError):
        write_remote_file(FakeSSHClient(sftp=BrokenSFTP()), '/etc/hadoop/workers', 'x')


def test_upload_to_all_hosts_invalid_host_settings(targets, archive):
    def connector(target):
        if not target.username:
            return connect_ssh(target)
        return FakeSSHClient(target.address)

    targets[1] = make_target(2, username='')

    outcomes = upload_to_all_hosts(SessionManager(connector=connector), targets, str(archive),
                                   '/opt/software', show_progress=False)

    assert [outcome.success for outcome in outcomes] == [True, False, True]
    assert 'Username must not be empty' in outcomes[1].error


def test_upload_to_all_hosts_duplicate_indexes(archive):
    targets = [make_target(1), make_target(1, ip='192.168.1.201')]
    sessions = FakeSessionManager(down={'192.168.1.101'})

    outcomes = upload_to_all_hosts(sessions, targets, str(archive), '/tmp', show_progress=False)

    assert [outcome.address for outcome in outcomes] == ['192.168.1.101', '192.168.1.201']
    assert [outcome.success for outcome in outcomes] == [False, True]
