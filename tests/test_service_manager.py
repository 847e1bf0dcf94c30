"""
Test Hadoop service management
"""
from conftest import FakeSessionManager, FakeSSHClient
from hads.commands.status import get_cluster_status, web_endpoints
from hads.deploy.service_manager import (
    check_service_status, parse_jps, service_phases, start_services, stop_services
)

JPS_OUTPUT = """\
2817 NameNode
3020 DataNode
3341 NodeManager
3550 JobHistoryServer
4012 Jps
"""


class LoggingClient(FakeSSHClient):
    """Records commands of every host into one shared log"""

    def __init__(self, address, log, **kwargs):
        super().__init__(address, **kwargs)
        self.log = log

    def _response_for(self, command):
        self.log.append((self.address, command))
        return super()._response_for(command)


def shared_log_cluster(targets, **per_host):
    log = []
    clients = {
        target.address: LoggingClient(target.address, log, **per_host.get(target.address, {}))
        for target in targets
    }
    return FakeSessionManager(clients=clients), log


def daemon_calls(log):
    return [(address, command.rsplit(' ', 1)[-1]) for address, command in log if '--daemon' in command]


def test_parse_jps():
    assert parse_jps(JPS_OUTPUT) == {'NameNode', 'DataNode', 'NodeManager', 'JobHistoryServer', 'Jps'}
    assert parse_jps('bash: jps: command not found') == set()


def test_phase_order(plan):
    assert [name for name, _ in service_phases(plan)] == \
        ['Start HDFS', 'Start YARN', 'Start JobHistoryServer']


def test_start_order(plan, targets):
    sessions, log = shared_log_cluster(targets)

    assert start_services(sessions, plan) == []

    assert daemon_calls(log) == [
        ('192.168.1.101', 'namenode'),
        ('192.168.1.101', 'datanode'),
        ('192.168.1.102', 'datanode'),
        ('192.168.1.103', 'secondarynamenode'),
        ('192.168.1.103', 'datanode'),
        ('192.168.1.101', 'nodemanager'),
        ('192.168.1.102', 'resourcemanager'),
        ('192.168.1.102', 'nodemanager'),
        ('192.168.1.103', 'nodemanager'),
        ('192.168.1.101', 'historyserver'),
    ]
    assert all(command.startswith('/opt/module/hadoop/bin/') for _, command in log)


def test_stop_in_reverse_order(plan, targets):
    sessions, log = shared_log_cluster(targets)

    assert stop_services(sessions, plan) == []

    calls = daemon_calls(log)
    assert calls[0] == ('192.168.1.101', 'historyserver')
    assert calls[-1] == ('192.168.1.103', 'secondarynamenode')
    assert calls.index(('192.168.1.101', 'namenode')) > calls.index(('192.168.1.101', 'datanode'))
    assert all('--daemon stop' in command for _, command in log)


def test_start_continues_after_host_failure(plan, targets):
    sessions, log = shared_log_cluster(
        targets, **{'192.168.1.102': {'responses': {'datanode': ('', 'port in use\n', 1)}}})
    reported = []

    failures = start_services(sessions, plan,
                              on_failure=lambda target, step, error: reported.append(target.label))

    assert len(failures) == 1
    assert failures[0].startswith('[VM2] Start HDFS failed')
    assert reported == ['VM2']
    assert ('192.168.1.103', 'datanode') in daemon_calls(log)


def test_start_stops_when_requested(plan, targets):
    sessions, log = shared_log_cluster(targets)

    start_services(sessions, plan, should_stop=lambda: len(log) > 0)

    assert daemon_calls(log) == [('192.168.1.101', 'namenode'), ('192.168.1.101', 'datanode')]


def test_check_service_status(plan, targets):
    clients = {
        '192.168.1.101': FakeSSHClient('192.168.1.101', responses={'jps': (JPS_OUTPUT, '', 0)}),
    }
    sessions = FakeSessionManager(clients=clients, down={'192.168.1.103'})

    status = check_service_status(sessions, plan)

    assert status[1] == {'NameNode': True, 'DataNode': True, 'NodeManager': True,
                         'JobHistoryServer': True}
    assert status[2] == {'DataNode': False, 'ResourceManager': False, 'NodeManager': False}
    assert status[3] is None
    assert clients['192.168.1.101'].commands == ['/opt/module/jdk/bin/jps']


def test_cluster_status_summary(plan):
    clients = {
        '192.168.1.101': FakeSSHClient('192.168.1.101', responses={'jps': (JPS_OUTPUT, '', 0)}),
    }
    sessions = FakeSessionManager(clients=clients, down={'192.168.1.102', '192.168.1.103'})

    info = get_cluster_status(sessions, plan)

    assert info['running'] == info['expected'] == 4
    assert [host['reachable'] for host in info['hosts']] == [True, False, False]


def test_web_endpoints_use_role_hosts(plan):
    assert web_endpoints(plan) == {
        'NameNode': 'http://192.168.1.101:9870',
        'SecondaryNameNode': 'http://192.168.1.103:9868',
        'ResourceManager': 'http://192.168.1.102:8088',
        'JobHistory': 'http://192.168.1.101:19888/jobhistory',
    }
