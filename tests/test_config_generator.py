"""
Test Hadoop configuration generation
"""
import xml.etree.ElementTree as ET
import pytest
from conftest import make_target
from hads.deploy.config_generator import (
    generate_hadoop_configs, generate_hadoop_env_line, generate_workers, render_configuration
)
from hads.exceptions import DeploymentError
from hads.models import ClusterSettings, DeploymentPlan, NodeRole, RoleAssignment


def properties(xml_text):
    root = ET.fromstring(xml_text.split('\n', 2)[2])
    return {prop.findtext('name'): prop.findtext('value') for prop in root.iter('property')}


def test_generates_all_files(plan):
    files = generate_hadoop_configs(plan)
    assert set(files) == {'core-site.xml', 'hdfs-site.xml', 'yarn-site.xml', 'mapred-site.xml', 'workers'}


def test_core_site_points_at_namenode(plan):
    core = properties(generate_hadoop_configs(plan)['core-site.xml'])

    assert core['fs.defaultFS'] == 'hdfs://hadoop101:9000'
    assert core['hadoop.tmp.dir'] == '/opt/module/hadoop/tmp'
    assert core['hadoop.http.staticuser.user'] == 'hadoop'


def test_role_hosts_in_site_files(plan):
    files = generate_hadoop_configs(plan)
    hdfs = properties(files['hdfs-site.xml'])
    yarn = properties(files['yarn-site.xml'])
    mapred = properties(files['mapred-site.xml'])

    assert hdfs['dfs.namenode.secondary.http-address'] == 'hadoop103:9868'
    assert hdfs['dfs.namenode.http-address'] == 'hadoop101:9870'
    assert yarn['yarn.resourcemanager.hostname'] == 'hadoop102'
    assert mapred['mapreduce.framework.name'] == 'yarn'
    assert mapred['mapreduce.jobhistory.webapp.address'] == 'hadoop101:19888'


def test_workers_lists_datanodes(plan):
    assert generate_workers(plan) == 'hadoop101\nhadoop102\nhadoop103\n'


def test_replication_capped_by_datanodes(targets):
    roles = RoleAssignment({
        1: {NodeRole.NAMENODE, NodeRole.DATANODE},
        2: {NodeRole.RESOURCEMANAGER, NodeRole.SECONDARYNAMENODE},
        3: {NodeRole.NODEMANAGER},
    })
    plan = DeploymentPlan(targets=targets, roles=roles, cluster=ClusterSettings(replication=3))

    hdfs = properties(generate_hadoop_configs(plan)['hdfs-site.xml'])

    assert hdfs['dfs.replication'] == '1'


def test_missing_role_raises(targets):
    plan = DeploymentPlan(targets=targets, roles=RoleAssignment.custom(3))

    with pytest.raises(DeploymentError, match='NameNode'):
        generate_hadoop_configs(plan)


def test_values_are_escaped():
    xml_text = render_configuration([('custom.value', 'a<b&c')])

    assert '<value>a&lt;b&amp;c</value>' in xml_text
    assert properties(xml_text)['custom.value'] == 'a<b&c'


def test_hadoop_env_line():
    plan = DeploymentPlan(targets=[make_target(1)], roles=RoleAssignment.quick(1))
    assert generate_hadoop_env_line(plan) == 'export JAVA_HOME=/opt/module/jdk'
