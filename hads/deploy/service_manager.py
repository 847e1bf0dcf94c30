"""
Hadoop service management functions
"""
import posixpath
from hads.deploy.executor import execute_buffered, run_checked
from hads.deploy.transfer import verify_remote_file
from hads.exceptions import HadsError
from hads.models import NodeRole
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

# role -> (launcher, daemon name, jps main class)
DAEMONS = {
    NodeRole.NAMENODE: ('hdfs', 'namenode', 'NameNode'),
    NodeRole.SECONDARYNAMENODE: ('hdfs', 'secondarynamenode', 'SecondaryNameNode'),
    NodeRole.DATANODE: ('hdfs', 'datanode', 'DataNode'),
    NodeRole.RESOURCEMANAGER: ('yarn', 'resourcemanager', 'ResourceManager'),
    NodeRole.NODEMANAGER: ('yarn', 'nodemanager', 'NodeManager'),
}
HISTORY_SERVER = ('mapred', 'historyserver', 'JobHistoryServer')

HDFS_ROLES = (NodeRole.NAMENODE, NodeRole.SECONDARYNAMENODE, NodeRole.DATANODE)
YARN_ROLES = (NodeRole.RESOURCEMANAGER, NodeRole.NODEMANAGER)
PAST_TENSE = {'start': 'started', 'stop': 'stopped'}


def daemon_command(layout, daemon, action):
    launcher, name, _ = daemon
    return f"{layout.hadoop_home}/bin/{launcher} --daemon {action} {name}"


def is_namenode_formatted(ssh, layout):
    return verify_remote_file(ssh, posixpath.join(layout.hdfs_name_dir, 'current', 'VERSION'))


def format_namenode(ssh, target, plan, on_line=None):
    """
    Format the NameNode metadata store unless it is already formatted

    Args:
        ssh: SSH connection to the NameNode host
        target: HostTarget of the NameNode
        plan: DeploymentPlan
        on_line: Output line callback

    Raises:
        CommandFailedError: If formatting fails

    Returns:
        True if formatted, False if skipped
    """
    layout = plan.layout
    if is_namenode_formatted(ssh, layout):
        logger.info(f"[{target.label}] NameNode already formatted, skipping")
        return False

    logger.info(f"[{target.label}] Formatting NameNode...")
    run_checked(ssh, f"{layout.hadoop_home}/bin/hdfs namenode -format -force -nonInteractive",
                on_line, on_line, target.address)
    logger.info(f"[{target.label}] ✓ NameNode formatted")
    return True


def _host_daemons(plan, roles):
    """Ordered (target, [daemon, ...]) for hosts running any of the roles"""
    result = []
    for target in plan.targets:
        daemons = [DAEMONS[role] for role in roles if plan.roles.has_role(target.index, role)]
        if daemons:
            result.append((target, daemons))
    return result


def service_phases(plan):
    """
    Startup order: HDFS, then YARN, then the job history server on the
    NameNode host

    Returns:
        List of (phase name, [(target, [daemon, ...]), ...])
    """
    phases = [
        ('Start HDFS', _host_daemons(plan, HDFS_ROLES)),
        ('Start YARN', _host_daemons(plan, YARN_ROLES)),
    ]
    namenode = plan.host_with(NodeRole.NAMENODE)
    if namenode is not None:
        phases.append(('Start JobHistoryServer', [(namenode, [HISTORY_SERVER])]))
    return phases


def _run_phases(session_manager, plan, phases, action, on_line, on_failure, should_stop):
    failures = []
    for step, hosts in phases:
        logger.info(f"{step}...")
        for target, daemons in hosts:
            if should_stop is not None and should_stop():
                logger.warning(f"{step} interrupted")
                return failures
            commands = [daemon_command(plan.layout, daemon, action) for daemon in daemons]
            try:
                ssh = session_manager.get_or_create_session(target)
                run_checked(ssh, commands, on_line, on_line, target.address)
                logger.info(f"[{target.label}] ✓ {', '.join(d[1] for d in daemons)} {PAST_TENSE[action]}")
            except HadsError as e:
                logger.error(f"[{target.label}] {step} failed: {e}")
                failures.append(f"[{target.label}] {step} failed: {e}")
                if on_failure is not None:
                    on_failure(target, step, e)
    return failures


def start_services(session_manager, plan, on_line=None, on_failure=None, should_stop=None):
    """
    Start Hadoop daemons on every host according to its roles

    A failing host is reported and the remaining hosts are still started.

    Args:
        session_manager: SessionManager
        plan: DeploymentPlan
        on_line: Output line callback
        on_failure: Called with (target, step, error) for each failing host
        should_stop: Callable returning True to stop before the next host

    Returns:
        List of failure messages, empty if everything started
    """
    logger.info("Starting Hadoop services...")
    failures = _run_phases(session_manager, plan, service_phases(plan), 'start',
                           on_line, on_failure, should_stop)
    interrupted = should_stop is not None and should_stop()
    if not failures and not interrupted:
        logger.info("✓ All services started")
    return failures


def stop_services(session_manager, plan, on_line=None, on_failure=None):
    """Stop daemons in reverse startup order"""
    logger.info("Stopping Hadoop services...")
    phases = []
    for step, hosts in reversed(service_phases(plan)):
        hosts = [(target, list(reversed(daemons))) for target, daemons in hosts]
        phases.append((step.replace('Start', 'Stop', 1), hosts))

    failures = _run_phases(session_manager, plan, phases, 'stop', on_line, on_failure, None)
    if not failures:
        logger.info("✓ All services stopped")
    return failures


def expected_daemons(plan, index):
    """jps names of the daemons a host should run"""
    names = [DAEMONS[role][2] for role in HDFS_ROLES + YARN_ROLES
             if plan.roles.has_role(index, role)]
    if plan.roles.has_role(index, NodeRole.NAMENODE):
        names.append(HISTORY_SERVER[2])
    return names


def parse_jps(output):
    """Set of JVM main class names from jps output"""
    running = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].isdigit():
            running.add(parts[1])
    return running


def check_service_status(session_manager, plan):
    """
    Check which expected daemons are running on each host

    Args:
        session_manager: SessionManager
        plan: DeploymentPlan

    Returns:
        Dictionary {host_index: {daemon: running}}, None for unreachable hosts
    """
    status = {}
    jps = f"{plan.layout.jdk_home}/bin/jps"

    for target in plan.targets:
        try:
            ssh = session_manager.get_or_create_session(target)
            running = parse_jps(execute_buffered(ssh, jps, timeout=30))
        except HadsError as e:
            logger.warning(f"[{target.label}] Status check failed: {e}")
            status[target.index] = None
            continue

        status[target.index] = {
            daemon: daemon in running for daemon in expected_daemons(plan, target.index)
        }

    return status
