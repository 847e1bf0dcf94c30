"""
Hadoop deployment modules
"""

# Sessions and remote execution
from .ssh import SessionManager, connect_ssh
from .executor import (
    execute_buffered,
    execute_streaming,
    execute_sequence,
    run_checked
)

# File transfer
from .transfer import (
    upload_file,
    upload_to_all_hosts,
    verify_remote_file,
    write_remote_file,
    TransferProgress,
    TqdmProgress
)

# Connection diagnostics
from .tester import ConnectionTester

# Configuration generators
from .config_generator import generate_hadoop_configs

# Node initialization
from .node_initializer import (
    set_hostname,
    configure_hosts_file
)

# Installation
from .installer import (
    install_jdk,
    install_hadoop,
    distribute_configuration
)

# Service management
from .service_manager import (
    format_namenode,
    start_services,
    stop_services,
    check_service_status
)

__all__ = [
    'SessionManager',
    'connect_ssh',
    'execute_buffered',
    'execute_streaming',
    'execute_sequence',
    'run_checked',
    'upload_file',
    'upload_to_all_hosts',
    'verify_remote_file',
    'write_remote_file',
    'TransferProgress',
    'TqdmProgress',
    'ConnectionTester',
    'generate_hadoop_configs',
    'set_hostname',
    'configure_hosts_file',
    'install_jdk',
    'install_hadoop',
    'distribute_configuration',
    'format_namenode',
    'start_services',
    'stop_services',
    'check_service_status'
]
