"""
Hadoop configuration file generators
"""
from xml.sax.saxutils import escape
from hads.exceptions import DeploymentError
from hads.models import NodeRole
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

JOBHISTORY_RPC_PORT = 10020


def render_configuration(properties):
    """
    Render a Hadoop *-site.xml document

    Args:
        properties: List of (name, value) pairs

    Returns:
        XML content string
    """
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<?xml-stylesheet type="text/xsl" href="configuration.xsl"?>',
        '<configuration>',
    ]
    for name, value in properties:
        lines.append('    <property>')
        lines.append(f'        <name>{escape(str(name))}</name>')
        lines.append(f'        <value>{escape(str(value))}</value>')
        lines.append('    </property>')
    lines.append('</configuration>')
    return "\n".join(lines) + "\n"


def _required_host(plan, role):
    host = plan.host_with(role)
    if host is None:
        raise DeploymentError(f"No host is assigned the {role.display_name} role")
    return host


def generate_core_site(plan):
    namenode = _required_host(plan, NodeRole.NAMENODE)
    return render_configuration([
        ('fs.defaultFS', f"hdfs://{namenode.hostname}:{plan.cluster.namenode_port}"),
        ('hadoop.tmp.dir', plan.layout.hdfs_tmp_dir),
        ('hadoop.http.staticuser.user', namenode.username),
        ('io.file.buffer.size', 131072),
    ])


def generate_hdfs_site(plan):
    """
    Generate hdfs-site.xml

    Replication never exceeds the number of DataNodes so that a small
    cluster does not report every block as under-replicated.
    """
    namenode = _required_host(plan, NodeRole.NAMENODE)
    secondary = _required_host(plan, NodeRole.SECONDARYNAMENODE)
    datanodes = plan.hosts_with(NodeRole.DATANODE)
    replication = max(1, min(plan.cluster.replication, len(datanodes) or 1))
    cluster = plan.cluster

    return render_configuration([
        ('dfs.replication', replication),
        ('dfs.blocksize', f"{cluster.block_size_mb}m"),
        ('dfs.namenode.name.dir', f"file://{plan.layout.hdfs_name_dir}"),
        ('dfs.datanode.data.dir', f"file://{plan.layout.hdfs_data_dir}"),
        ('dfs.namenode.http-address', f"{namenode.hostname}:{cluster.namenode_http_port}"),
        ('dfs.namenode.secondary.http-address', f"{secondary.hostname}:{cluster.secondary_http_port}"),
        ('dfs.permissions.enabled', 'false'),
    ])


def generate_yarn_site(plan):
    resourcemanager = _required_host(plan, NodeRole.RESOURCEMANAGER)
    namenode = _required_host(plan, NodeRole.NAMENODE)
    cluster = plan.cluster
    rm_host = resourcemanager.hostname

    return render_configuration([
        ('yarn.nodemanager.aux-services', 'mapreduce_shuffle'),
        ('yarn.resourcemanager.hostname', rm_host),
        ('yarn.resourcemanager.address', f"{rm_host}:{cluster.resourcemanager_port}"),
        ('yarn.resourcemanager.webapp.address', f"{rm_host}:{cluster.resourcemanager_web_port}"),
        ('yarn.nodemanager.env-whitelist',
         'JAVA_HOME,HADOOP_COMMON_HOME,HADOOP_HDFS_HOME,HADOOP_CONF_DIR,'
         'CLASSPATH_PREPEND_DISTCACHE,HADOOP_YARN_HOME,HADOOP_MAPRED_HOME'),
        ('yarn.nodemanager.resource.memory-mb', cluster.yarn_memory_mb),
        ('yarn.scheduler.maximum-allocation-mb', cluster.yarn_memory_mb),
        ('yarn.nodemanager.vmem-check-enabled', 'false'),
        ('yarn.log-aggregation-enable', 'true'),
        ('yarn.log.server.url',
         f"http://{namenode.hostname}:{cluster.history_web_port}/jobhistory/logs"),
        ('yarn.log-aggregation.retain-seconds', 604800),
    ])


def generate_mapred_site(plan):
    namenode = _required_host(plan, NodeRole.NAMENODE)
    hadoop_home = plan.layout.hadoop_home

    return render_configuration([
        ('mapreduce.framework.name', 'yarn'),
        ('mapreduce.jobhistory.address', f"{namenode.hostname}:{JOBHISTORY_RPC_PORT}"),
        ('mapreduce.jobhistory.webapp.address',
         f"{namenode.hostname}:{plan.cluster.history_web_port}"),
        ('yarn.app.mapreduce.am.env', f"HADOOP_MAPRED_HOME={hadoop_home}"),
        ('mapreduce.map.env', f"HADOOP_MAPRED_HOME={hadoop_home}"),
        ('mapreduce.reduce.env', f"HADOOP_MAPRED_HOME={hadoop_home}"),
    ])


def generate_workers(plan):
    """One DataNode hostname per line"""
    hostnames = [target.hostname for target in plan.hosts_with(NodeRole.DATANODE)]
    return "\n".join(hostnames) + "\n"


def generate_hadoop_env_line(plan):
    return f"export JAVA_HOME={plan.layout.jdk_home}"


def generate_hadoop_configs(plan):
    """
    Generate every file distributed to $HADOOP_HOME/etc/hadoop

    Args:
        plan: DeploymentPlan

    Raises:
        DeploymentError: If a required role has no host

    Returns:
        Dictionary of file name to content
    """
    files = {
        'core-site.xml': generate_core_site(plan),
        'hdfs-site.xml': generate_hdfs_site(plan),
        'yarn-site.xml': generate_yarn_site(plan),
        'mapred-site.xml': generate_mapred_site(plan),
        'workers': generate_workers(plan),
    }
    logger.info(f"✓ Generated {len(files)} Hadoop configuration files")
    return files
