"""
Shared fixtures and paramiko fakes
"""
import io
import shlex
import pytest
import paramiko
from hads.exceptions import HostConnectionError
from hads.models import ConnectionStatus, DeploymentPlan, HostTarget, RoleAssignment
from hads.utils import vault


class FakeChannel:
    """Exec channel replaying canned output"""

    def __init__(self, stdout=b'', stderr=b'', exit_status=0, chunk_size=None):
        self._stdout = self._chunks(stdout, chunk_size)
        self._stderr = self._chunks(stderr, chunk_size)
        self._exit_status = exit_status
        self.command = None
        self.closed = False

    @staticmethod
    def _chunks(data, chunk_size):
        if isinstance(data, str):
            data = data.encode('utf-8')
        if isinstance(data, list):
            return list(data)
        if not data:
            return []
        size = chunk_size or len(data)
        return [data[i:i + size] for i in range(0, len(data), size)]

    def exec_command(self, command):
        self.command = command

    def recv_ready(self):
        return bool(self._stdout)

    def recv(self, nbytes):
        return self._stdout.pop(0) if self._stdout else b''

    def recv_stderr_ready(self):
        return bool(self._stderr)

    def recv_stderr(self, nbytes):
        return self._stderr.pop(0) if self._stderr else b''

    def exit_status_ready(self):
        return True

    def recv_exit_status(self):
        return self._exit_status

    def close(self):
        self.closed = True


class _FakeStream:
    def __init__(self, data, channel):
        self._data = data.encode('utf-8') if isinstance(data, str) else data
        self.channel = channel

    def read(self):
        return self._data


class FakeSFTP:
    """In-memory SFTP server shared by one client"""

    def __init__(self, files=None, fail_put=False):
        self.files = dict(files or {})
        self.dirs = {'/'}
        self.fail_put = fail_put
        self.closed = False

    def stat(self, path):
        if path in self.dirs or path in self.files:
            return object()
        raise FileNotFoundError(2, 'No such file', path)

    lstat = stat

    def mkdir(self, path):
        self.dirs.add(path)

    def put(self, localpath, remotepath, callback=None):
        if self.fail_put:
            raise IOError("Failure")
        with open(localpath, 'rb') as f:
            data = f.read()
        if callback:
            callback(len(data) // 2, len(data))
            callback(len(data), len(data))
        self.files[remotepath] = data

    def file(self, path, mode='r'):
        sftp = self

        class _Writer(io.StringIO):
            def __exit__(self, *args):
                sftp.files[path] = self.getvalue().encode('utf-8')
                return super().__exit__(*args)

        return _Writer()

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, client, address):
        self._client = client
        self._address = address
        self.active = True
        self.keepalive = None

    def is_active(self):
        return self.active

    def getpeername(self):
        return (self._address, 22)

    def set_keepalive(self, interval):
        self.keepalive = interval

    def open_session(self):
        return self._client.open_channel()


class FakeSSHClient:
    """
    Connected SSH client answering commands from a response table

    responses maps a command substring to (stdout, stderr, exit_code); the
    first matching entry wins. Unmatched plain echo commands print their
    arguments. faults lists substrings whose execution raises a transport
    error.
    """

    def __init__(self, address='192.168.1.101', responses=None, faults=None, sftp=None):
        self.address = address
        self.responses = list((responses or {}).items())
        self.faults = list(faults or [])
        self.sftp = sftp or FakeSFTP()
        self.commands = []
        self._transport = FakeTransport(self, address)
        self._pending = None

    def _response_for(self, command):
        for fragment in self.faults:
            if fragment in command:
                raise paramiko.SSHException("Connection reset by peer")
        for fragment, response in self.responses:
            if fragment in command:
                return response
        if command.startswith('echo ') and not any(c in command for c in '|>'):
            return (' '.join(shlex.split(command)[1:]) + '\n', '', 0)
        return ('', '', 0)

    def get_transport(self):
        return self._transport

    def exec_command(self, command, timeout=None):
        self.commands.append(command)
        stdout, stderr, exit_code = self._response_for(command)
        channel = FakeChannel(exit_status=exit_code)
        return None, _FakeStream(stdout, channel), _FakeStream(stderr, channel)

    def open_channel(self):
        client = self

        class _Channel(FakeChannel):
            def exec_command(self, command):
                super().exec_command(command)
                client.commands.append(command)
                stdout, stderr, exit_code = client._response_for(command)
                self._stdout = self._chunks(stdout, None)
                self._stderr = self._chunks(stderr, None)
                self._exit_status = exit_code

        return _Channel()

    def open_sftp(self):
        return self.sftp

    def close(self):
        self._transport.active = False


class FakeSessionManager:
    """Session manager handing out FakeSSHClient objects by address"""

    def __init__(self, clients=None, down=None):
        self.clients = dict(clients or {})
        self.down = set(down or [])
        self.closed = []

    def get_or_create_session(self, target):
        if target.address in self.down:
            raise HostConnectionError(
                f"SSH connection failed to {target.address}: timed out",
                ConnectionStatus.TIMEOUT, target.address)
        return self.clients.setdefault(target.address, FakeSSHClient(target.address))

    def close_session(self, address):
        self.closed.append(address)

    def close_all(self):
        pass


def make_target(index, **overrides):
    values = dict(
        index=index,
        ip=f"192.168.1.{100 + index}",
        hostname=f"hadoop10{index}",
        username='hadoop',
        password='secret',
        ssh_port=22,
        timeout=10,
    )
    values.update(overrides)
    return HostTarget(**values)


@pytest.fixture
def targets():
    return [make_target(i) for i in range(1, 4)]


@pytest.fixture
def plan(targets):
    return DeploymentPlan(targets=targets, roles=RoleAssignment.quick(3))


@pytest.fixture(autouse=True)
def hads_home(tmp_path, monkeypatch):
    """Isolate key material and host store per test"""
    home = tmp_path / 'hads_home'
    monkeypatch.setenv('HADS_HOME', str(home))
    vault.clear_cached_key()
    yield home
    vault.clear_cached_key()
