"""
Configuration validation utilities
"""
import os
import re
from hads.exceptions import ValidationError
from hads.models import NodeRole, SourceType
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

IP_PATTERN = re.compile(
    r'^((25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$'
)
USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,32}$')

REQUIRED_SINGLETON_ROLES = (
    NodeRole.NAMENODE,
    NodeRole.RESOURCEMANAGER,
    NodeRole.SECONDARYNAMENODE,
)


def get_nested_value(data, path):
    """
    Get nested value from dict using dot notation

    Args:
        data: Dictionary
        path: Dot notation path (e.g., 'jdk.source')

    Returns:
        Value or None
    """
    keys = path.split('.')
    value = data
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return None
    return value


def is_valid_ip(ip):
    if not isinstance(ip, str) or not ip.strip():
        return False
    return IP_PATTERN.match(ip.strip()) is not None


def is_valid_username(username):
    if not isinstance(username, str) or not username.strip():
        return False
    return USERNAME_PATTERN.match(username.strip()) is not None


def validate_ip(ip):
    if ip is None or not str(ip).strip():
        raise ValidationError("IP address must not be empty", 'ip', ip)
    if not is_valid_ip(ip):
        raise ValidationError("IP address is not a valid IPv4 address", 'ip', ip)


def validate_username(username):
    if username is None or not str(username).strip():
        raise ValidationError("Username must not be empty", 'username', username)
    if not is_valid_username(username):
        raise ValidationError(
            "Username may only contain letters, digits, '_' and '-', 1-32 characters",
            'username', username)


def validate_password(password):
    if not password:
        raise ValidationError("Password must not be empty", 'password', password)


def validate_port(port):
    if not isinstance(port, int) or isinstance(port, bool) or port < 1 or port > 65535:
        raise ValidationError("SSH port must be between 1 and 65535", 'ssh_port', port)


def validate_timeout(timeout):
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ValidationError("Timeout must be greater than 0", 'timeout', timeout)


def validate_host_target(target):
    """
    Validate one host's connection settings before any network activity

    Args:
        target: HostTarget

    Raises:
        ValidationError: On the first invalid field
    """
    if target is None:
        raise ValidationError("Host configuration must not be empty", 'target', None)

    validate_ip(target.ip)
    validate_username(target.username)
    validate_password(target.password)
    validate_port(target.ssh_port)
    validate_timeout(target.timeout)

    logger.debug(f"Host configuration valid: VM{target.index} - {target.ip}")
    return True


def validate_role_assignments(assignment, host_indexes):
    """
    Validate a RoleAssignment against the cluster's hosts

    Every singleton role (NameNode, ResourceManager, SecondaryNameNode) must
    be assigned exactly once and every host must run a DataNode.

    Args:
        assignment: RoleAssignment
        host_indexes: Indexes of the hosts in the cluster

    Raises:
        ValidationError: If the assignment is incomplete
    """
    if assignment is None or len(assignment) == 0:
        raise ValidationError("Role assignment must not be empty", 'roles', None)

    for role in REQUIRED_SINGLETON_ROLES:
        hosts = assignment.hosts_with(role)
        if not hosts:
            raise ValidationError(
                f"{role.display_name} must be assigned to one host",
                'roles', f"missing {role.display_name}")
        if len(hosts) > 1:
            raise ValidationError(
                f"{role.display_name} must be assigned to exactly one host",
                'roles', f"{role.display_name} on hosts {hosts}")

    for index in host_indexes:
        if not assignment.roles(index):
            raise ValidationError(f"VM{index} has no roles", 'roles', f"VM{index}")
        if not assignment.has_role(index, NodeRole.DATANODE):
            raise ValidationError(
                f"VM{index} must run a DataNode", 'roles', f"missing DataNode on VM{index}")

    unknown = set(index for index, _ in assignment.items()) - set(host_indexes)
    if unknown:
        raise ValidationError(
            f"Roles assigned to unknown hosts: {sorted(unknown)}", 'roles', sorted(unknown))

    logger.debug("Role assignment valid")
    return True


def validate_config(config):
    """
    Validate deployment configuration completeness

    Args:
        config: Configuration dictionary loaded from YAML

    Raises:
        ValidationError: If validation fails

    Returns:
        True if valid
    """
    errors = []

    for package in ('jdk', 'hadoop'):
        source = get_nested_value(config, f'{package}.source') or SourceType.PRESET.name
        if str(source).upper() not in SourceType.__members__:
            errors.append(f"{package}.source must be one of {', '.join(SourceType.__members__)}")
            continue

        if str(source).upper() == SourceType.LOCAL_FILE.name:
            local_path = get_nested_value(config, f'{package}.local_path')
            if not local_path:
                errors.append(f"Missing required field: {package}.local_path (for LOCAL_FILE source)")
            elif not os.path.isfile(os.path.expanduser(local_path)):
                errors.append(f"{package}.local_path does not exist: {local_path}")

    mode = get_nested_value(config, 'deploy_mode')
    if mode is not None and str(mode).upper() not in ('QUICK', 'CUSTOM'):
        errors.append("deploy_mode must be QUICK or CUSTOM")

    roles = config.get('roles') or {}
    if not isinstance(roles, dict):
        errors.append("roles must map host index to a list of roles")
    else:
        for index, names in roles.items():
            try:
                int(index)
            except (TypeError, ValueError):
                errors.append(f"roles: host index must be a number, got {index!r}")
                continue
            for name in names or []:
                if str(name).upper() not in NodeRole.__members__:
                    errors.append(f"roles.{index}: unknown role {name!r}")

    for key, value in (config.get('cluster') or {}).items():
        if key.endswith('_port') and (not isinstance(value, int) or not 0 < value < 65536):
            errors.append(f"cluster.{key} must be a valid port number")

    for key, value in (config.get('layout') or {}).items():
        if not isinstance(value, str) or not value.startswith('/'):
            errors.append(f"layout.{key} must be an absolute path")

    if errors:
        raise ValidationError(
            "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors),
            'config', None)

    logger.info("✓ Configuration validation passed")
    return True
