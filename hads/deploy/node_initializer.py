"""
Node initialization: hostname and cluster hosts table
"""
import shlex
from hads.deploy.executor import run_checked
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)


def append_line_command(line, path):
    """Shell command appending a line to a root-owned file unless already present"""
    quoted_line = shlex.quote(line)
    quoted_path = shlex.quote(path)
    return (f"grep -qxF {quoted_line} {quoted_path} 2>/dev/null || "
            f"echo {quoted_line} | sudo tee -a {quoted_path} > /dev/null")


def hosts_entries(targets):
    """Address to hostname lines for every cluster node"""
    return [f"{target.ip} {target.hostname}" for target in targets]


def set_hostname(ssh, target, on_line=None):
    """
    Set the node's hostname

    Args:
        ssh: SSH connection
        target: HostTarget
        on_line: Output line callback
    """
    logger.info(f"[{target.label}] Setting hostname to {target.hostname}")
    run_checked(ssh, f"sudo hostnamectl set-hostname {shlex.quote(target.hostname)}",
                on_line, on_line, target.address)
    logger.info(f"[{target.label}] ✓ Hostname set")


def configure_hosts_file(ssh, target, plan, on_line=None):
    """
    Append the cluster's hosts table, skipping lines already present

    Args:
        ssh: SSH connection
        target: HostTarget being configured
        plan: DeploymentPlan
        on_line: Output line callback
    """
    hosts_file = plan.layout.hosts_file
    logger.info(f"[{target.label}] Updating {hosts_file}")

    commands = [f"sudo cp {shlex.quote(hosts_file)} {shlex.quote(hosts_file + '.bak')}"]
    commands += [append_line_command(line, hosts_file) for line in hosts_entries(plan.targets)]
    run_checked(ssh, commands, on_line, on_line, target.address)

    logger.info(f"[{target.label}] ✓ Hosts file updated")
