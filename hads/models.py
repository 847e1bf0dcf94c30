"""
Data model shared by the deployment engine
"""
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set


class ConnectionStatus(Enum):
    """Outcome of a connection test, ordered by diagnostic layer"""

    NOT_TESTED = "Not tested"
    TESTING = "Testing"
    SUCCESS = "Connected"
    NETWORK_UNREACHABLE = "Network unreachable"
    SSH_SERVICE_DOWN = "SSH service down"
    AUTH_FAILED = "Authentication failed"
    TIMEOUT = "Connection timed out"
    UNKNOWN_ERROR = "Unknown error"

    @property
    def description(self):
        return self.value

    @property
    def is_success(self):
        return self is ConnectionStatus.SUCCESS

    @property
    def is_failure(self):
        return self not in (ConnectionStatus.SUCCESS, ConnectionStatus.NOT_TESTED,
                            ConnectionStatus.TESTING)


class NodeRole(Enum):
    NAMENODE = "NameNode"
    RESOURCEMANAGER = "ResourceManager"
    SECONDARYNAMENODE = "SecondaryNameNode"
    DATANODE = "DataNode"
    NODEMANAGER = "NodeManager"

    @property
    def display_name(self):
        return self.value


class DeployMode(Enum):
    QUICK = "Quick deploy"
    CUSTOM = "Custom deploy"


class SourceType(Enum):
    PRESET = "Preset version"
    LOCAL_FILE = "Local upload"


class EventKind(Enum):
    STAGE = "stage"
    PROGRESS = "progress"
    LOG = "log"
    ERROR = "error"
    COMPLETE = "complete"
    FATAL = "fatal"


@dataclass(frozen=True)
class HostTarget:
    """One cluster node: address, credentials, port and connect timeout (seconds)"""

    index: int
    ip: str
    hostname: str
    username: str
    password: str = field(default='', repr=False)
    ssh_port: int = 22
    timeout: int = 30

    @property
    def address(self):
        return self.ip

    @property
    def label(self):
        return f"VM{self.index}"


@dataclass(frozen=True)
class ConnectionOutcome:
    """Result of one connection test; never mutated after creation"""

    host_index: int
    address: str
    status: ConnectionStatus
    message: str
    error_detail: Optional[str] = None
    latency_ms: int = -1
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def success(cls, host_index, address, latency_ms, message="Connected"):
        return cls(host_index, address, ConnectionStatus.SUCCESS, message,
                   latency_ms=latency_ms)

    @classmethod
    def failure(cls, host_index, address, status, message=None, error_detail=None):
        return cls(host_index, address, status, message or status.description,
                   error_detail=error_detail)

    @property
    def is_success(self):
        return self.status.is_success

    @property
    def user_message(self):
        if self.is_success:
            return (f"VM{self.host_index} ({self.address}) connected, "
                    f"response time: {self.latency_ms}ms")
        detail = f", detail: {self.error_detail}" if self.error_detail else ""
        return f"VM{self.host_index} ({self.address}) {self.message}{detail}"


@dataclass(frozen=True)
class CommandOutcome:
    command: str
    exit_code: int
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0

    @property
    def success(self):
        return self.exit_code == 0


@dataclass(frozen=True)
class TransferOutcome:
    host_index: int
    address: str
    success: bool
    local_path: str
    remote_path: Optional[str] = None
    size: int = 0
    duration: float = 0.0
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, host_index, address, local_path, remote_path, size, duration):
        return cls(host_index, address, True, local_path, remote_path, size, duration)

    @classmethod
    def failed(cls, host_index, address, local_path, error, duration=0.0):
        return cls(host_index, address, False, local_path, duration=duration, error=error)


@dataclass(frozen=True)
class DeploymentEvent:
    kind: EventKind
    message: str = ''
    current: int = 0
    total: int = 100

    @property
    def is_terminal(self):
        return self.kind in (EventKind.COMPLETE, EventKind.FATAL)


class RoleAssignment:
    """
    Mapping of host index to the Hadoop roles it runs

    Quick mode spreads the singleton roles over the three hosts; custom mode
    starts every host as a plain worker. DataNode is mandatory everywhere
    and cannot be removed.
    """

    def __init__(self, assignments=None, mode=DeployMode.QUICK):
        self.mode = mode
        self._roles: Dict[int, Set[NodeRole]] = {}
        if assignments is not None:
            for index, roles in assignments.items():
                self._roles[int(index)] = set(roles)

    @classmethod
    def quick(cls, host_count=3):
        assignment = cls(mode=DeployMode.QUICK)
        singletons = [NodeRole.NAMENODE, NodeRole.RESOURCEMANAGER, NodeRole.SECONDARYNAMENODE]
        for index in range(1, host_count + 1):
            roles = {NodeRole.DATANODE, NodeRole.NODEMANAGER}
            if index <= len(singletons):
                roles.add(singletons[index - 1])
            assignment._roles[index] = roles
        return assignment

    @classmethod
    def custom(cls, host_count=3):
        assignment = cls(mode=DeployMode.CUSTOM)
        for index in range(1, host_count + 1):
            assignment._roles[index] = {NodeRole.DATANODE, NodeRole.NODEMANAGER}
        return assignment

    def add_role(self, index, role):
        self._roles.setdefault(index, set()).add(role)

    def remove_role(self, index, role):
        if role is NodeRole.DATANODE:
            return
        self._roles.get(index, set()).discard(role)

    def roles(self, index):
        return set(self._roles.get(index, set()))

    def has_role(self, index, role):
        return role in self._roles.get(index, set())

    def hosts_with(self, role):
        return sorted(index for index, roles in self._roles.items() if role in roles)

    def items(self):
        return sorted(self._roles.items())

    def as_dict(self):
        """Serializable form: {index: [ROLE_NAME, ...]}"""
        return {index: sorted(role.name for role in roles) for index, roles in self.items()}

    def __len__(self):
        return len(self._roles)

    def __repr__(self):
        return f"RoleAssignment(mode={self.mode.name}, roles={self.as_dict()})"


@dataclass
class PackageSource:
    """Where an installation archive comes from"""

    source_type: SourceType = SourceType.PRESET
    local_path: Optional[str] = None
    archive: Optional[str] = None

    @property
    def archive_name(self):
        if self.source_type is SourceType.LOCAL_FILE and self.local_path:
            return os.path.basename(self.local_path)
        return self.archive


@dataclass
class RemoteLayout:
    """Remote filesystem conventions, all overridable from the config file"""

    software_dir: str = '/opt/software'
    module_dir: str = '/opt/module'
    jdk_home: str = '/opt/module/jdk'
    hadoop_home: str = '/opt/module/hadoop'
    profile_file: str = '/etc/profile'
    hosts_file: str = '/etc/hosts'
    hdfs_name_dir: str = '/opt/module/hadoop/name'
    hdfs_data_dir: str = '/opt/module/hadoop/data'
    hdfs_tmp_dir: str = '/opt/module/hadoop/tmp'

    @property
    def hadoop_conf_dir(self):
        return f"{self.hadoop_home}/etc/hadoop"


@dataclass
class ClusterSettings:
    namenode_port: int = 9000
    namenode_http_port: int = 9870
    secondary_http_port: int = 9868
    resourcemanager_port: int = 8032
    resourcemanager_web_port: int = 8088
    history_web_port: int = 19888
    replication: int = 3
    block_size_mb: int = 128
    yarn_memory_mb: int = 2048


DEFAULT_JDK_ARCHIVE = 'jdk-8u212-linux-x64.tar.gz'
DEFAULT_HADOOP_ARCHIVE = 'hadoop-3.1.3.tar.gz'


@dataclass
class DeploymentPlan:
    """Everything the orchestrator needs to bring up a cluster"""

    targets: List[HostTarget]
    roles: RoleAssignment
    jdk: PackageSource = field(
        default_factory=lambda: PackageSource(archive=DEFAULT_JDK_ARCHIVE))
    hadoop: PackageSource = field(
        default_factory=lambda: PackageSource(archive=DEFAULT_HADOOP_ARCHIVE))
    layout: RemoteLayout = field(default_factory=RemoteLayout)
    cluster: ClusterSettings = field(default_factory=ClusterSettings)

    def target(self, index):
        for target in self.targets:
            if target.index == index:
                return target
        raise KeyError(f"No host with index {index}")

    def hosts_with(self, role):
        return [self.target(index) for index in self.roles.hosts_with(role)]

    def host_with(self, role):
        hosts = self.hosts_with(role)
        return hosts[0] if hosts else None
