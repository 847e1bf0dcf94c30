"""
JDK and Hadoop installation, configuration distribution
"""
import posixpath
import shlex
from hads.deploy.config_generator import generate_hadoop_env_line
from hads.deploy.executor import execute_buffered, run_checked
from hads.deploy.node_initializer import append_line_command
from hads.deploy.transfer import upload_file, verify_remote_file, write_remote_file
from hads.exceptions import DeploymentError
from hads.models import SourceType
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

ARCHIVE_SUFFIXES = ('.tar.gz', '.tgz', '.tar')


def _owner(target):
    return f"{target.username}:{target.username}"


def prepare_directory(ssh, target, path, on_line=None):
    """Create a root-level directory and hand it to the SSH user"""
    quoted = shlex.quote(path)
    run_checked(ssh, [
        f"sudo mkdir -p {quoted}",
        f"sudo chown {_owner(target)} {quoted}",
    ], on_line, on_line, target.address)


def stage_archive(ssh, target, source, layout, on_line=None):
    """
    Make the installation archive available in the software directory

    A local file is uploaded; a preset archive must already be staged.

    Args:
        ssh: SSH connection
        target: HostTarget
        source: PackageSource
        layout: RemoteLayout
        on_line: Output line callback

    Raises:
        DeploymentError: If the archive cannot be staged

    Returns:
        Remote archive path
    """
    prepare_directory(ssh, target, layout.software_dir, on_line)
    archive_name = source.archive_name
    if not archive_name:
        raise DeploymentError("No installation archive configured")
    remote_path = posixpath.join(layout.software_dir, archive_name)

    if source.source_type is SourceType.LOCAL_FILE:
        logger.info(f"[{target.label}] Uploading {source.local_path}")
        if not upload_file(ssh, source.local_path, layout.software_dir):
            raise DeploymentError(f"upload of {source.local_path} failed")
    elif not verify_remote_file(ssh, remote_path):
        raise DeploymentError(f"preset archive not found on host: {remote_path}")

    logger.info(f"[{target.label}] ✓ Archive staged: {remote_path}")
    return remote_path


def _archive_top_dir(ssh, archive_path):
    top = execute_buffered(
        ssh, f"tar -tzf {shlex.quote(archive_path)} | head -1 | cut -f1 -d/")
    top = top.strip().splitlines()[0].strip() if top.strip() else ''
    if top and ' ' not in top and not top.startswith('tar:'):
        return top

    name = posixpath.basename(archive_path)
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return name[:-len(suffix)]
    return name


def extract_archive(ssh, target, archive_path, module_dir, on_line=None):
    """
    Extract an archive into the module directory

    Returns:
        Absolute path of the extracted top-level directory
    """
    prepare_directory(ssh, target, module_dir, on_line)
    top_dir = _archive_top_dir(ssh, archive_path)
    extracted = posixpath.join(module_dir, top_dir)

    logger.info(f"[{target.label}] Extracting {archive_path} -> {module_dir}")
    run_checked(ssh, [
        f"sudo tar -zxf {shlex.quote(archive_path)} -C {shlex.quote(module_dir)}",
        f"sudo chown -R {_owner(target)} {shlex.quote(extracted)}",
    ], on_line, on_line, target.address)
    return extracted


def link_home(ssh, target, extracted, home, on_line=None):
    """Point the stable home path at the extracted directory"""
    run_checked(ssh, [
        f"sudo ln -sfn {shlex.quote(extracted)} {shlex.quote(home)}",
        f"sudo chown -h {_owner(target)} {shlex.quote(home)}",
    ], on_line, on_line, target.address)
    logger.info(f"[{target.label}] ✓ Linked {home} -> {extracted}")


def append_profile_exports(ssh, target, profile_file, exports, on_line=None):
    """Append export lines to the login profile, skipping lines already present"""
    commands = [append_line_command(line, profile_file) for line in exports]
    run_checked(ssh, commands, on_line, on_line, target.address)


def jdk_exports(layout):
    return [
        f"export JAVA_HOME={layout.jdk_home}",
        "export PATH=$PATH:$JAVA_HOME/bin",
    ]


def hadoop_exports(layout):
    return [
        f"export HADOOP_HOME={layout.hadoop_home}",
        "export PATH=$PATH:$HADOOP_HOME/bin",
        "export PATH=$PATH:$HADOOP_HOME/sbin",
    ]


def _install_package(ssh, target, source, home, exports, layout, on_line):
    archive_path = stage_archive(ssh, target, source, layout, on_line)
    extracted = extract_archive(ssh, target, archive_path, layout.module_dir, on_line)
    link_home(ssh, target, extracted, home, on_line)
    append_profile_exports(ssh, target, layout.profile_file, exports, on_line)


def install_jdk(ssh, target, plan, on_line=None):
    """
    Install the JDK on one node

    Args:
        ssh: SSH connection
        target: HostTarget
        plan: DeploymentPlan
        on_line: Output line callback
    """
    logger.info(f"[{target.label}] Installing JDK")
    layout = plan.layout
    _install_package(ssh, target, plan.jdk, layout.jdk_home, jdk_exports(layout), layout, on_line)
    logger.info(f"[{target.label}] ✓ JDK installed at {layout.jdk_home}")


def install_hadoop(ssh, target, plan, on_line=None):
    logger.info(f"[{target.label}] Installing Hadoop")
    layout = plan.layout
    _install_package(ssh, target, plan.hadoop, layout.hadoop_home,
                     hadoop_exports(layout), layout, on_line)
    logger.info(f"[{target.label}] ✓ Hadoop installed at {layout.hadoop_home}")


def distribute_configuration(ssh, target, plan, files, on_line=None):
    """
    Push generated Hadoop configuration to one node

    Writes every generated file to the configuration directory, sets
    JAVA_HOME in hadoop-env.sh and creates the HDFS directories.

    Args:
        ssh: SSH connection
        target: HostTarget
        plan: DeploymentPlan
        files: Dictionary of file name to content
        on_line: Output line callback
    """
    layout = plan.layout
    conf_dir = layout.hadoop_conf_dir

    for name, content in files.items():
        write_remote_file(ssh, posixpath.join(conf_dir, name), content)
        logger.debug(f"[{target.label}] Wrote {name}")

    hadoop_env = posixpath.join(conf_dir, 'hadoop-env.sh')
    env_line = shlex.quote(generate_hadoop_env_line(plan))
    data_dirs = " ".join(shlex.quote(path) for path in
                         (layout.hdfs_name_dir, layout.hdfs_data_dir, layout.hdfs_tmp_dir))

    run_checked(ssh, [
        f"grep -qxF {env_line} {shlex.quote(hadoop_env)} || echo {env_line} >> {shlex.quote(hadoop_env)}",
        f"sudo mkdir -p {data_dirs}",
        f"sudo chown -R {_owner(target)} {data_dirs}",
    ], on_line, on_line, target.address)

    logger.info(f"[{target.label}] ✓ Configuration distributed ({len(files)} files)")
