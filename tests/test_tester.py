"""
Test layered connection diagnostics
"""
import threading
import time
from conftest import FakeSessionManager, FakeSSHClient, make_target
from hads.deploy.ssh import SessionManager, connect_ssh
from hads.deploy.tester import ConnectionTester
from hads.exceptions import HostConnectionError
from hads.models import ConnectionOutcome, ConnectionStatus


class RecordingSessions(FakeSessionManager):
    def __init__(self, error=None, **kwargs):
        super().__init__(**kwargs)
        self.error = error
        self.requested = []

    def get_or_create_session(self, target):
        self.requested.append(target.address)
        if self.error is not None:
            raise self.error
        return super().get_or_create_session(target)


def make_tester(sessions, reachable=True, port_open=True):
    return ConnectionTester(
        sessions,
        reachability=lambda address, timeout: reachable,
        port_check=lambda address, port, timeout: port_open,
    )


def test_successful_connection():
    sessions = RecordingSessions()
    outcome = make_tester(sessions).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.SUCCESS
    assert outcome.is_success
    assert outcome.latency_ms >= 0
    assert "connected, response time" in outcome.user_message
    assert sessions.closed == []


def test_unreachable_host_never_opens_session():
    sessions = RecordingSessions()
    outcome = make_tester(sessions, reachable=False).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.NETWORK_UNREACHABLE
    assert sessions.requested == []


def test_closed_port_never_authenticates():
    sessions = RecordingSessions()
    outcome = make_tester(sessions, port_open=False).test_connection(make_target(2))

    assert outcome.status is ConnectionStatus.SSH_SERVICE_DOWN
    assert outcome.address == '192.168.1.102'
    assert sessions.requested == []


def test_auth_failure_classified():
    error = HostConnectionError("Authentication failed.", ConnectionStatus.AUTH_FAILED, '192.168.1.101')
    outcome = make_tester(RecordingSessions(error=error)).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.AUTH_FAILED
    assert 'username and password' in outcome.message
    assert outcome.error_detail == 'Authentication failed.'


def test_timeout_classified():
    error = HostConnectionError("SSH connection failed: timed out", address='192.168.1.101')
    outcome = make_tester(RecordingSessions(error=error)).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.TIMEOUT


def test_probe_failure_closes_session():
    client = FakeSSHClient(responses={'echo': ('', '', 127)})
    sessions = RecordingSessions(clients={'192.168.1.101': client})

    outcome = make_tester(sessions).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.UNKNOWN_ERROR
    assert outcome.error_detail == 'test command execution failed'
    assert sessions.closed == ['192.168.1.101']


def test_probe_transport_fault_closes_session():
    client = FakeSSHClient(faults=['echo'])
    sessions = RecordingSessions(clients={'192.168.1.101': client})

    outcome = make_tester(sessions).test_connection(make_target(1))

    assert outcome.status is ConnectionStatus.UNKNOWN_ERROR
    assert sessions.closed == ['192.168.1.101']


def test_all_preserves_order_with_mixed_results(targets):
    tester = ConnectionTester(
        RecordingSessions(),
        reachability=lambda address, timeout: address != '192.168.1.102',
        port_check=lambda address, port, timeout: True,
    )

    outcomes = tester.test_all(targets)

    assert [outcome.host_index for outcome in outcomes] == [1, 2, 3]
    assert [outcome.status for outcome in outcomes] == [
        ConnectionStatus.SUCCESS, ConnectionStatus.NETWORK_UNREACHABLE, ConnectionStatus.SUCCESS]


def test_all_runs_hosts_concurrently(targets):
    barrier = threading.Barrier(len(targets), timeout=5)

    def reachability(address, timeout):
        # Only passes when every host is being tested at the same time
        barrier.wait()
        return True

    tester = ConnectionTester(RecordingSessions(), reachability=reachability,
                              port_check=lambda address, port, timeout: True)

    start = time.monotonic()
    outcomes = tester.test_all(targets)

    assert all(outcome.is_success for outcome in outcomes)
    assert time.monotonic() - start < 5


def test_all_sequential(targets):
    sessions = RecordingSessions()
    outcomes = make_tester(sessions).test_all(targets, concurrent=False)

    assert len(outcomes) == 3
    assert sessions.requested == ['192.168.1.101', '192.168.1.102', '192.168.1.103']


def test_all_empty():
    assert make_tester(RecordingSessions()).test_all([]) == []


def test_summarize():
    ok = ConnectionOutcome.success(1, '192.168.1.101', 12)
    failed = ConnectionOutcome.failure(2, '192.168.1.102', ConnectionStatus.TIMEOUT)

    assert ConnectionTester.summarize([ok, ok, ok]) == "All hosts connected (3/3)"
    assert ConnectionTester.summarize([ok, failed, ok]) == \
        "Connection test finished: 2 succeeded, 1 failed"


def fake_connector(target):
    if not target.username:
        # Raises ValidationError before any socket is opened
        return connect_ssh(target)
    return FakeSSHClient(target.address)


def test_all_reports_invalid_host_settings(targets):
    targets[1] = make_target(2, username='')
    tester = make_tester(SessionManager(connector=fake_connector))

    outcomes = tester.test_all(targets)

    assert [outcome.host_index for outcome in outcomes] == [1, 2, 3]
    assert [outcome.status for outcome in outcomes] == [
        ConnectionStatus.SUCCESS, ConnectionStatus.UNKNOWN_ERROR, ConnectionStatus.SUCCESS]
    assert 'Username must not be empty' in outcomes[1].error_detail


def test_all_keeps_outcomes_of_duplicate_indexes():
    targets = [make_target(1), make_target(1, ip='192.168.1.201')]
    tester = ConnectionTester(
        RecordingSessions(),
        reachability=lambda address, timeout: address == '192.168.1.201',
        port_check=lambda address, port, timeout: True,
    )

    outcomes = tester.test_all(targets)

    assert [outcome.address for outcome in outcomes] == ['192.168.1.101', '192.168.1.201']
    assert [outcome.is_success for outcome in outcomes] == [False, True]
