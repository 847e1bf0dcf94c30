"""
Status command implementation
"""
from hads.deploy.service_manager import check_service_status
from hads.models import NodeRole
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)


def web_endpoints(plan):
    """
    Web UI URLs of the cluster

    Args:
        plan: DeploymentPlan

    Returns:
        Dictionary of UI name to URL
    """
    cluster = plan.cluster
    endpoints = {}

    namenode = plan.host_with(NodeRole.NAMENODE)
    if namenode is not None:
        endpoints['NameNode'] = f"http://{namenode.ip}:{cluster.namenode_http_port}"

    secondary = plan.host_with(NodeRole.SECONDARYNAMENODE)
    if secondary is not None:
        endpoints['SecondaryNameNode'] = f"http://{secondary.ip}:{cluster.secondary_http_port}"

    resourcemanager = plan.host_with(NodeRole.RESOURCEMANAGER)
    if resourcemanager is not None:
        endpoints['ResourceManager'] = f"http://{resourcemanager.ip}:{cluster.resourcemanager_web_port}"

    if namenode is not None:
        endpoints['JobHistory'] = f"http://{namenode.ip}:{cluster.history_web_port}/jobhistory"

    return endpoints


def get_cluster_status(session_manager, plan):
    """
    Collect daemon status for every host

    Returns:
        Dictionary with 'hosts' (per-host rows), 'running', 'expected'
        and 'endpoints'
    """
    status = check_service_status(session_manager, plan)

    hosts = []
    running = 0
    expected = 0
    for target in plan.targets:
        daemons = status.get(target.index)
        reachable = daemons is not None
        daemons = daemons or {}
        expected += len(daemons)
        running += sum(1 for up in daemons.values() if up)
        hosts.append({
            'index': target.index,
            'address': target.address,
            'hostname': target.hostname,
            'reachable': reachable,
            'daemons': daemons,
        })

    return {
        'hosts': hosts,
        'running': running,
        'expected': expected,
        'endpoints': web_endpoints(plan),
    }


def print_cluster_summary(info):
    """
    Print a summary of cluster status

    Args:
        info: Result of get_cluster_status
    """
    print("\n" + "=" * 60)
    print("Cluster Status")
    print("=" * 60)

    for host in info['hosts']:
        print(f"\nVM{host['index']} {host['hostname']} ({host['address']})")
        if not host['reachable']:
            print("  ✗ unreachable")
            continue
        for daemon, up in host['daemons'].items():
            print(f"  {'✓' if up else '✗'} {daemon}")

    print(f"\nDaemons running: {info['running']}/{info['expected']}")

    if info['endpoints']:
        print("\nWeb UI:")
        for name, url in info['endpoints'].items():
            print(f"  {name}: {url}")

    print("=" * 60 + "\n")
