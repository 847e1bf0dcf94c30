"""
Configuration management
"""
import json
import os
import re
import shutil
import yaml
from dataclasses import fields
from pathlib import Path
from datetime import datetime
from deepdiff import DeepDiff
from hads.exceptions import ValidationError
from hads.models import (
    ClusterSettings, DeployMode, DeploymentPlan, HostTarget, NodeRole, PackageSource,
    RemoteLayout, RoleAssignment, SourceType, DEFAULT_HADOOP_ARCHIVE, DEFAULT_JDK_ARCHIVE
)
from hads.utils.logger import setup_logger, mask_sensitive_data
from hads.utils.validator import validate_config
from hads.utils.vault import decrypt, encrypt, get_hads_home

logger = setup_logger(__name__)

HOST_STORE_VERSION = "1.0"
HOST_STORE_FILE = 'config.json'
DEFAULT_HOST_COUNT = 3
DEFAULT_SSH_PORT = 22
DEFAULT_TIMEOUT = 30
# Older host stores kept the timeout in milliseconds
MILLISECOND_THRESHOLD = 1000

MAX_CONFIG_VERSIONS = 20
VERSION_FORMAT = "%Y%m%d_%H%M%S_%f"


def load_config(config_file):
    """
    Load configuration from YAML file

    Args:
        config_file: Path to config file

    Returns:
        Configuration dictionary
    """
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    logger.info(f"Configuration loaded from: {config_file}")
    return config or {}


def save_config(config_file, config):
    """
    Save configuration to YAML file

    Args:
        config_file: Path to config file
        config: Configuration dictionary
    """
    config_path = Path(config_file)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Configuration saved to: {config_file}")


class ConfigVersionManager:
    """
    Timestamped backups kept next to a configuration file

    Backups live in ``.config_backups`` beside the file, are private to the
    owner (the host store holds encrypted passwords) and only the newest
    ``max_versions`` are kept.
    """

    def __init__(self, config_file, max_versions=MAX_CONFIG_VERSIONS):
        """
        Initialize version manager

        Args:
            config_file: Path to config file (YAML deployment config or JSON host store)
            max_versions: Number of backups to keep
        """
        self.config_file = Path(config_file)
        self.backup_dir = self.config_file.parent / '.config_backups'
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.max_versions = max_versions

    def _backup_path(self, version):
        return self.backup_dir / f"{self.config_file.stem}_{version}{self.config_file.suffix}"

    def _backups(self):
        pattern = f"{self.config_file.stem}_*{self.config_file.suffix}"
        return sorted(self.backup_dir.glob(pattern), reverse=True)

    def _prune(self):
        for stale in self._backups()[self.max_versions:]:
            stale.unlink()
            logger.debug(f"Removed old backup: {stale}")

    def backup_current_config(self):
        """
        Copy the current file into the backup directory

        Returns:
            Path to backup file, None if there is nothing to back up
        """
        if not self.config_file.exists():
            logger.warning(f"Config file does not exist: {self.config_file}")
            return None

        backup_file = self._backup_path(datetime.now().strftime(VERSION_FORMAT))
        shutil.copy2(self.config_file, backup_file)
        os.chmod(backup_file, 0o600)
        self._prune()

        logger.info(f"Configuration backed up: {backup_file}")
        return backup_file

    def list_versions(self):
        """
        Available backups, newest first

        Returns:
            List of {'file', 'timestamp', 'size'} dictionaries
        """
        prefix = len(self.config_file.stem) + 1
        return [
            {
                'file': str(backup),
                'timestamp': backup.stem[prefix:],
                'size': backup.stat().st_size
            }
            for backup in self._backups()
        ]

    def rollback_to_version(self, version_timestamp):
        """
        Restore a backup over the current file

        The current file is backed up first, so a rollback can be undone.

        Args:
            version_timestamp: Timestamp shown by list_versions

        Raises:
            ValueError: If no backup has that timestamp

        Returns:
            True if successful
        """
        backup_file = self._backup_path(version_timestamp)
        if not backup_file.exists():
            raise ValueError(f"Version not found: {version_timestamp}")

        self.backup_current_config()
        shutil.copy2(backup_file, self.config_file)
        logger.info(f"Rolled back {self.config_file.name} to version: {version_timestamp}")
        return True


def get_host_store_path():
    return get_hads_home() / HOST_STORE_FILE


def default_hosts():
    """Three empty host entries named hadoop101..hadoop103"""
    logger.info("Creating default host configuration")
    return [
        HostTarget(index=i, ip='', hostname=f"hadoop10{i}", username='', password='',
                   ssh_port=DEFAULT_SSH_PORT, timeout=DEFAULT_TIMEOUT)
        for i in range(1, DEFAULT_HOST_COUNT + 1)
    ]


def _normalize_timeout(value):
    timeout = int(value)
    if timeout >= MILLISECOND_THRESHOLD:
        return max(1, timeout // 1000)
    return timeout


def host_from_dict(data):
    return HostTarget(
        index=int(data['index']),
        ip=data.get('ip') or '',
        hostname=data.get('hostname') or '',
        username=data.get('username') or '',
        password=decrypt(data.get('password') or ''),
        ssh_port=int(data.get('sshPort', DEFAULT_SSH_PORT)),
        timeout=_normalize_timeout(data.get('timeout', DEFAULT_TIMEOUT))
    )


def host_to_dict(target):
    return {
        'index': target.index,
        'ip': target.ip,
        'hostname': target.hostname,
        'username': target.username,
        'password': encrypt(target.password),
        'sshPort': target.ssh_port,
        'timeout': target.timeout,
    }


def load_hosts(path=None):
    """
    Load host connection settings from the JSON host store

    A missing file, or one without a host list, yields the default hosts.

    Args:
        path: Host store path (defaults to ~/.hads/config.json)

    Raises:
        ValidationError: If the file is not valid JSON or an entry is malformed
        VaultError: If a stored password cannot be decrypted

    Returns:
        List of HostTarget sorted by index
    """
    path = Path(path) if path else get_host_store_path()

    if not path.is_file():
        logger.warning(f"Host store not found, using defaults: {path}")
        return default_hosts()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Host store is not valid JSON: {e}", 'hosts_file', str(path)) from e

    if not isinstance(data, dict) or not isinstance(data.get('vms'), list):
        logger.warning(f"Host store has no host list, using defaults: {path}")
        return default_hosts()

    try:
        targets = [host_from_dict(entry) for entry in data['vms']]
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Host store entry is malformed: {e}", 'hosts_file', str(path)) from e

    logger.info(f"Loaded {len(targets)} host(s) from {path}")
    return sorted(targets, key=lambda target: target.index)


def save_hosts(targets, path=None):
    """
    Save host connection settings, encrypting every password

    Args:
        targets: List of HostTarget
        path: Host store path (defaults to ~/.hads/config.json)

    Returns:
        Path written
    """
    path = Path(path) if path else get_host_store_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        'version': HOST_STORE_VERSION,
        'lastModified': datetime.now().isoformat(),
        'vms': [host_to_dict(target) for target in targets],
    }
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.info(f"Saved {len(targets)} host(s) to {path}")
    return path


def _host_fields(targets):
    return {
        target.index: {
            'ip': target.ip,
            'hostname': target.hostname,
            'username': target.username,
            'password': target.password,
            'ssh_port': target.ssh_port,
            'timeout': target.timeout,
        }
        for target in targets
    }


def _index_of(path):
    match = re.match(r"root\[(\d+)\]", path)
    return int(match.group(1)) if match else None


def analyze_host_changes(old_targets, new_targets):
    """
    Analyze differences between two host lists

    Args:
        old_targets: Stored hosts
        new_targets: New hosts

    Returns:
        Dictionary with 'changes', 'added', 'removed', 'retest' (host indexes
        whose connection must be tested again)
    """
    diff = DeepDiff(_host_fields(old_targets), _host_fields(new_targets))

    changes = {
        'changes': [],
        'added': sorted(i for i in map(_index_of, diff.get('dictionary_item_added', [])) if i),
        'removed': sorted(i for i in map(_index_of, diff.get('dictionary_item_removed', [])) if i),
        'retest': set(),
    }

    for key, value in diff.get('values_changed', {}).items():
        index = _index_of(key)
        field_name = key.rsplit('[', 1)[-1].strip("]'")
        secret = field_name == 'password'
        changes['changes'].append({
            'index': index,
            'field': field_name,
            'old': '***' if secret else value['old_value'],
            'new': '***' if secret else value['new_value'],
        })
        if index is not None and field_name != 'hostname':
            changes['retest'].add(index)

    changes['retest'] = sorted(changes['retest'].union(changes['added']))
    return changes


def print_host_changes(changes):
    """
    Print host configuration differences

    Args:
        changes: Changes dictionary from analyze_host_changes
    """
    print("\n" + "=" * 70)
    print("Host Configuration Changes")
    print("=" * 70)

    for change in changes['changes']:
        print(f"  • VM{change['index']} {change['field']}: {change['old']} -> {change['new']}")
    for index in changes['added']:
        print(f"  • VM{index} added")
    for index in changes['removed']:
        print(f"  • VM{index} removed")

    if not any([changes['changes'], changes['added'], changes['removed']]):
        print("\n✓ No changes detected")
    elif changes['retest']:
        print(f"\n⚠️  Connection must be re-tested for: "
              f"{', '.join(f'VM{i}' for i in changes['retest'])}")

    print("=" * 70 + "\n")


def _package_source(section, default_archive):
    section = section or {}
    source_type = SourceType[str(section.get('source', SourceType.PRESET.name)).upper()]
    return PackageSource(
        source_type=source_type,
        local_path=section.get('local_path'),
        archive=section.get('archive', default_archive)
    )


def _dataclass_from_section(cls, section, name):
    known = {f.name for f in fields(cls)}
    section = section or {}
    unknown = set(section) - known
    if unknown:
        logger.warning(f"Ignoring unknown {name} keys: {', '.join(sorted(unknown))}")
    return cls(**{key: value for key, value in section.items() if key in known})


def _role_assignment(config, targets):
    mode = DeployMode[str(config.get('deploy_mode', DeployMode.QUICK.name)).upper()]
    roles = config.get('roles')

    if not roles:
        host_count = len(targets)
        return RoleAssignment.quick(host_count) if mode is DeployMode.QUICK \
            else RoleAssignment.custom(host_count)

    assignments = {
        int(index): {NodeRole[str(name).upper()] for name in names or []}
        for index, names in roles.items()
    }
    # DataNode runs everywhere
    for index in assignments:
        assignments[index].add(NodeRole.DATANODE)
    return RoleAssignment(assignments, mode)


def build_plan(config, targets):
    """
    Build a DeploymentPlan from the deployment config and the host list

    Args:
        config: Deployment configuration dictionary (sections may be missing)
        targets: List of HostTarget

    Raises:
        ValidationError: If the configuration is invalid

    Returns:
        DeploymentPlan
    """
    config = config or {}
    validate_config(config)

    plan = DeploymentPlan(
        targets=list(targets),
        roles=_role_assignment(config, targets),
        jdk=_package_source(config.get('jdk'), DEFAULT_JDK_ARCHIVE),
        hadoop=_package_source(config.get('hadoop'), DEFAULT_HADOOP_ARCHIVE),
        layout=_dataclass_from_section(RemoteLayout, config.get('layout'), 'layout'),
        cluster=_dataclass_from_section(ClusterSettings, config.get('cluster'), 'cluster'),
    )
    logger.debug(f"Deployment plan: {len(plan.targets)} host(s), roles {plan.roles!r}")
    return plan


def load_plan(config_file=None, hosts_file=None):
    """
    Load the deployment config (if any) and the host store into a plan

    Args:
        config_file: YAML deployment config path (optional)
        hosts_file: Host store path, overriding the config's hosts_file

    Returns:
        DeploymentPlan
    """
    config = load_config(config_file) if config_file else {}
    logger.debug(f"Deployment config: {mask_sensitive_data(config)}")
    hosts_path = hosts_file or config.get('hosts_file')
    if hosts_path:
        hosts_path = Path(hosts_path).expanduser()
    return build_plan(config, load_hosts(hosts_path))
