#!/usr/bin/env python3
"""
Hadoop Cluster Auto-Deploy CLI
"""
import click
import sys
import dataclasses
from pathlib import Path
from dotenv import load_dotenv
from tqdm import tqdm

# Load environment variables from .env file
load_dotenv()

from hads.config import (
    load_plan, load_hosts, save_hosts, get_host_store_path,
    ConfigVersionManager, analyze_host_changes, print_host_changes
)
from hads.exceptions import HadsError
from hads.models import EventKind
from hads.utils.logger import attach_log_file, setup_logger
from hads.utils.validator import validate_host_target, validate_role_assignments

# One log file per run, shared by every hads module
import datetime
log_timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
log_file = f'logs/hads_{log_timestamp}.log'
attach_log_file(log_file)
logger = setup_logger('hads.cli')

config_option = click.option('--config', type=click.Path(exists=True),
                             help='Deployment configuration file (YAML)')
hosts_option = click.option('--hosts-file', type=click.Path(),
                            help='Host store path (default: ~/.hads/config.json)')


def _hosts_path(hosts_file):
    return Path(hosts_file).expanduser() if hosts_file else get_host_store_path()


def _validate_hosts(targets):
    errors = []
    for target in targets:
        try:
            validate_host_target(target)
        except HadsError as e:
            errors.append(f"VM{target.index}: {e}")
    if errors:
        raise HadsError("Host validation failed:\n" + "\n".join(f"  - {e}" for e in errors))


def _print_outcomes(outcomes):
    for outcome in outcomes:
        icon = "✓" if outcome.is_success else "✗"
        click.echo(f"  {icon} {outcome.user_message}")


@click.group()
@click.version_option(version='1.0.0')
def cli():
    """
    Hadoop Cluster Auto-Deploy Tool

    Test, deploy and manage a three-node Hadoop cluster over SSH.
    """
    pass


# Host management commands
@cli.group()
def hosts():
    """Host connection settings"""
    pass


@hosts.command('show')
@hosts_option
def hosts_show(hosts_file):
    """Show stored host settings (passwords hidden)"""
    try:
        targets = load_hosts(_hosts_path(hosts_file))

        click.echo("\n" + "=" * 70)
        click.echo("Hosts")
        click.echo("=" * 70)
        for target in targets:
            password = "set" if target.password else "not set"
            click.echo(f"  VM{target.index}: {target.username or '-'}@{target.ip or '-'}:{target.ssh_port} "
                       f"({target.hostname}), timeout {target.timeout}s, password {password}")
        click.echo("")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@hosts.command('set')
@hosts_option
@click.option('--index', required=True, type=int, help='Host index (1-3)')
@click.option('--ip', help='IPv4 address')
@click.option('--hostname', help='Hostname set on the node')
@click.option('--username', help='SSH username')
@click.option('--password', help='SSH password (prompted when omitted with --ask-password)')
@click.option('--ask-password', is_flag=True, help='Prompt for the SSH password')
@click.option('--port', type=int, help='SSH port')
@click.option('--timeout', type=int, help='Connect timeout in seconds')
def hosts_set(hosts_file, index, ip, hostname, username, password, ask_password, port, timeout):
    """
    Update one host's connection settings

    Validates the new settings, shows what changed and keeps a backup of
    the previous host store.
    """
    try:
        path = _hosts_path(hosts_file)
        old_targets = load_hosts(path)

        if ask_password and password is None:
            password = click.prompt('SSH password', hide_input=True)

        updates = {
            'ip': ip, 'hostname': hostname, 'username': username,
            'password': password, 'ssh_port': port, 'timeout': timeout,
        }
        updates = {key: value for key, value in updates.items() if value is not None}

        new_targets = []
        found = False
        for target in old_targets:
            if target.index == index:
                target = dataclasses.replace(target, **updates)
                validate_host_target(target)
                found = True
            new_targets.append(target)
        if not found:
            raise HadsError(f"No host with index {index}")

        changes = analyze_host_changes(old_targets, new_targets)
        print_host_changes(changes)

        if path.exists():
            ConfigVersionManager(path).backup_current_config()
        save_hosts(new_targets, path)
        click.echo(f"✓ Host VM{index} saved to {path}")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@hosts.command('validate')
@hosts_option
def hosts_validate(hosts_file):
    """Validate every stored host without touching the network"""
    try:
        targets = load_hosts(_hosts_path(hosts_file))
        _validate_hosts(targets)
        click.echo(f"\n✓ All {len(targets)} hosts are valid")

    except Exception as e:
        click.echo(f"\n✗ Validation failed: {str(e)}", err=True)
        sys.exit(1)


@hosts.command('history')
@hosts_option
def hosts_history(hosts_file):
    """List previous versions of the host store"""
    try:
        versions = ConfigVersionManager(_hosts_path(hosts_file)).list_versions()

        if not versions:
            click.echo("No host store history found")
            return

        click.echo("\n" + "=" * 70)
        click.echo("Host Store History")
        click.echo("=" * 70)

        for i, version in enumerate(versions, 1):
            click.echo(f"\n{i}. Version: {version['timestamp']}")
            click.echo(f"   File: {version['file']}")
            click.echo(f"   Size: {version['size']} bytes")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@hosts.command('rollback')
@hosts_option
@click.option('--version', required=True, help='Version timestamp (see hosts history)')
def hosts_rollback(hosts_file, version):
    """Restore a previous version of the host store"""
    try:
        if not click.confirm(f'Rollback to version {version}?'):
            click.echo("Operation cancelled")
            return

        ConfigVersionManager(_hosts_path(hosts_file)).rollback_to_version(version)
        click.echo("✓ Host store rolled back")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@hosts_option
@click.option('--sequential', is_flag=True, help='Test hosts one after another')
def test(hosts_file, sequential):
    """
    Test SSH connectivity of every host

    Each host is checked for network reachability, an open SSH port,
    authentication and a working shell.
    """
    from hads.deploy.ssh import SessionManager
    from hads.deploy.tester import ConnectionTester

    try:
        targets = load_hosts(_hosts_path(hosts_file))
        _validate_hosts(targets)

        with SessionManager() as sessions:
            tester = ConnectionTester(sessions)
            outcomes = tester.test_all(targets, concurrent=not sequential, show_progress=True)

        click.echo("")
        _print_outcomes(outcomes)
        click.echo(f"\n{ConnectionTester.summarize(outcomes)}")

        if not all(outcome.is_success for outcome in outcomes):
            sys.exit(1)

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@hosts_option
@click.option('--file', 'local_file', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Local file to upload')
@click.option('--remote-dir', default='/tmp', show_default=True, help='Remote directory')
def upload(hosts_file, local_file, remote_dir):
    """Upload a file to every host in parallel"""
    from hads.deploy.ssh import SessionManager
    from hads.deploy.transfer import upload_to_all_hosts

    try:
        targets = load_hosts(_hosts_path(hosts_file))
        _validate_hosts(targets)

        with SessionManager() as sessions:
            outcomes = upload_to_all_hosts(sessions, targets, local_file, remote_dir)

        click.echo("")
        for outcome in outcomes:
            if outcome.success:
                click.echo(f"  ✓ VM{outcome.host_index} ({outcome.address}): {outcome.remote_path} "
                           f"({outcome.size} bytes, {outcome.duration:.1f}s)")
            else:
                click.echo(f"  ✗ VM{outcome.host_index} ({outcome.address}): {outcome.error}")

        if not all(outcome.success for outcome in outcomes):
            sys.exit(1)

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


def _render_event(event, pbar, verbose):
    if event.kind is EventKind.STAGE:
        pbar.set_description(event.message)
        tqdm.write(f"\n▶ {event.message}")
    elif event.kind is EventKind.PROGRESS:
        if event.current > pbar.n:
            pbar.update(event.current - pbar.n)
    elif event.kind is EventKind.LOG:
        if verbose:
            tqdm.write(f"  {event.message}")
    elif event.kind is EventKind.ERROR:
        tqdm.write(f"  ✗ {event.message}")
    elif event.kind is EventKind.COMPLETE:
        tqdm.write(f"\n✓ {event.message}")
    elif event.kind is EventKind.FATAL:
        tqdm.write(f"\n✗ {event.message}")


@cli.command()
@config_option
@hosts_option
@click.option('--skip-test', is_flag=True, help='Do not test connections before deploying')
@click.option('--dry-run', is_flag=True, help='Validate only, do not execute')
@click.option('--verbose', is_flag=True, help='Show remote command output')
def deploy(config, hosts_file, skip_test, dry_run, verbose):
    """
    Deploy a Hadoop cluster

    This command will:
    1. Set hostnames and the hosts table
    2. Install the JDK
    3. Install Hadoop
    4. Distribute the Hadoop configuration
    5. Format the NameNode and start all services
    """
    from hads.commands.deploy import start_deployment
    from hads.commands.status import web_endpoints
    from hads.deploy.ssh import SessionManager
    from hads.deploy.tester import ConnectionTester

    try:
        click.echo("=" * 70)
        click.echo("Hadoop Cluster Deployment")
        click.echo("=" * 70)

        plan = load_plan(config, hosts_file)
        _validate_hosts(plan.targets)
        validate_role_assignments(plan.roles, [target.index for target in plan.targets])
        click.echo(f"✓ Plan loaded: {len(plan.targets)} hosts, roles {plan.roles.as_dict()}")

        if dry_run:
            click.echo("\n✓ Dry-run mode: Configuration is valid")
            return

        with SessionManager() as sessions:
            if not skip_test:
                click.echo("\nTesting connections...")
                outcomes = ConnectionTester(sessions).test_all(plan.targets)
                _print_outcomes(outcomes)
                if not all(outcome.is_success for outcome in outcomes):
                    raise HadsError("Connection test failed, fix the hosts above or use --skip-test")

            handle = start_deployment(plan, sessions)
            final = None
            with tqdm(total=100, desc="Deploying", unit="%") as pbar:
                try:
                    for event in handle.events():
                        _render_event(event, pbar, verbose)
                        final = event
                except KeyboardInterrupt:
                    tqdm.write("\n⚠️  Cancelling after the current step...")
                    handle.cancel()
                    for event in handle.events():
                        _render_event(event, pbar, verbose)
                        final = event
            handle.join()

        if final is None or final.kind is not EventKind.COMPLETE:
            sys.exit(1)

        click.echo("\nWeb UI:")
        for name, url in web_endpoints(plan).items():
            click.echo(f"  {name}: {url}")

    except Exception as e:
        logger.exception("Deployment failed")
        click.echo(f"\n✗ Error: {str(e)}", err=True)
        click.echo(f"  Details: {log_file}", err=True)
        sys.exit(1)


@cli.command()
@config_option
@hosts_option
def start(config, hosts_file):
    """Start Hadoop services on every host"""
    from hads.deploy.ssh import SessionManager
    from hads.deploy.service_manager import start_services

    try:
        plan = load_plan(config, hosts_file)
        with SessionManager() as sessions:
            failures = start_services(sessions, plan)

        for failure in failures:
            click.echo(f"  ✗ {failure}", err=True)
        if failures:
            sys.exit(1)
        click.echo("\n✓ Services started")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@config_option
@hosts_option
@click.option('--force', is_flag=True, help='Stop without confirmation')
def stop(config, hosts_file, force):
    """Stop Hadoop services on every host"""
    from hads.deploy.ssh import SessionManager
    from hads.deploy.service_manager import stop_services

    try:
        if not force:
            click.confirm('⚠️  This will stop all Hadoop services. Are you sure?', abort=True)

        plan = load_plan(config, hosts_file)
        with SessionManager() as sessions:
            failures = stop_services(sessions, plan)

        for failure in failures:
            click.echo(f"  ✗ {failure}", err=True)
        if failures:
            sys.exit(1)
        click.echo("\n✓ Services stopped")

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@config_option
@hosts_option
def status(config, hosts_file):
    """
    Show cluster status

    Lists the expected daemons on each host and whether they run.
    """
    from hads.commands.status import get_cluster_status, print_cluster_summary
    from hads.deploy.ssh import SessionManager

    try:
        plan = load_plan(config, hosts_file)
        with SessionManager() as sessions:
            info = get_cluster_status(sessions, plan)
        print_cluster_summary(info)

    except Exception as e:
        click.echo(f"✗ Error: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--config', required=True, type=click.Path(exists=True), help='Configuration file path')
@hosts_option
def validate(config, hosts_file):
    """
    Validate configuration

    Check the deployment configuration and the resulting role assignment.
    """
    try:
        click.echo("Validating configuration...")

        plan = load_plan(config, hosts_file)
        validate_role_assignments(plan.roles, [target.index for target in plan.targets])

        click.echo("\n✓ Configuration is valid")

    except Exception as e:
        click.echo(f"\n✗ Validation failed: {str(e)}", err=True)
        sys.exit(1)


if __name__ == '__main__':
    cli()
