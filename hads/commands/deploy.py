"""
Deploy command implementation: the five-stage cluster pipeline
"""
import queue
import threading
from hads.deploy.config_generator import generate_hadoop_configs
from hads.deploy.installer import distribute_configuration, install_hadoop, install_jdk
from hads.deploy.node_initializer import configure_hosts_file, set_hostname
from hads.deploy.service_manager import format_namenode, start_services
from hads.exceptions import DeploymentError, HadsError
from hads.models import DeploymentEvent, EventKind, NodeRole
from hads.utils.logger import setup_logger
from hads.utils.validator import validate_role_assignments

logger = setup_logger(__name__)

CANCELLED_MESSAGE = "Deployment cancelled"


class DeploymentCancelled(Exception):
    """Raised inside the worker when cancellation was requested"""


class DeploymentOrchestrator:
    """
    Runs the deployment pipeline and reports through an event queue

    Stages run in a fixed order. A failing host is reported as an ERROR event
    and the stage carries on with the remaining hosts; an unexpected error at
    stage level ends the run with a FATAL event. Every run ends with exactly
    one COMPLETE or FATAL event. Nothing is rolled back.
    """

    STAGE_SPAN = 20

    def __init__(self, plan, session_manager, events=None, cancel_event=None):
        self.plan = plan
        self.session_manager = session_manager
        self.events = events if events is not None else queue.Queue()
        self._cancel_event = cancel_event or threading.Event()
        self._failures = []

    @property
    def stages(self):
        return [
            ('Environment setup', self._setup_environment),
            ('JDK install', self._install_jdk),
            ('Hadoop install', self._install_hadoop),
            ('Config distribution', self._distribute_config),
            ('Cluster init & start', self._init_and_start),
        ]

    @property
    def cancelled(self):
        return self._cancel_event.is_set()

    @property
    def failures(self):
        """Per-host failure messages reported during the run"""
        return list(self._failures)

    def cancel(self):
        logger.warning("Deployment cancellation requested")
        self._cancel_event.set()

    def _emit(self, kind, message='', current=0):
        self.events.put(DeploymentEvent(kind, message, current))

    def _log(self, message):
        self._emit(EventKind.LOG, message)

    def _error(self, message):
        self._failures.append(message)
        self._emit(EventKind.ERROR, message)

    def _check_cancelled(self):
        if self.cancelled:
            raise DeploymentCancelled()

    def _line_callback(self, target):
        def on_line(line):
            self._log(f"[{target.label}] {line}")
        return on_line

    def _run_host_step(self, target, step, action):
        """
        Run one step against one host, reporting instead of raising on failure

        Returns:
            True if the step succeeded
        """
        try:
            ssh = self.session_manager.get_or_create_session(target)
            action(ssh, target, self._line_callback(target))
            return True
        except HadsError as e:
            logger.error(f"[{target.label}] {step} failed: {e}")
            self._error(f"[{target.label}] {step} failed: {e}")
            return False

    def _for_each_host(self, base, steps):
        targets = self.plan.targets
        for position, target in enumerate(targets, start=1):
            self._check_cancelled()
            self._log(f"[{target.label}] {target.address} ({target.hostname})")
            for step, action in steps:
                if not self._run_host_step(target, step, action):
                    break
            self._emit(EventKind.PROGRESS, f"{target.label} done",
                       base + self.STAGE_SPAN * position // (len(targets) + 1))

    def _setup_environment(self, base):
        self._for_each_host(base, [
            ('Set hostname', lambda ssh, target, on_line: set_hostname(ssh, target, on_line)),
            ('Configure hosts file',
             lambda ssh, target, on_line: configure_hosts_file(ssh, target, self.plan, on_line)),
        ])

    def _install_jdk(self, base):
        self._for_each_host(base, [
            ('JDK install', lambda ssh, target, on_line: install_jdk(ssh, target, self.plan, on_line)),
        ])

    def _install_hadoop(self, base):
        self._for_each_host(base, [
            ('Hadoop install',
             lambda ssh, target, on_line: install_hadoop(ssh, target, self.plan, on_line)),
        ])

    def _distribute_config(self, base):
        validate_role_assignments(self.plan.roles, [target.index for target in self.plan.targets])
        files = generate_hadoop_configs(self.plan)
        self._log(f"Generated {', '.join(files)}")

        self._for_each_host(base, [
            ('Config distribution',
             lambda ssh, target, on_line: distribute_configuration(
                 ssh, target, self.plan, files, on_line)),
        ])

    def _init_and_start(self, base):
        namenode = self.plan.host_with(NodeRole.NAMENODE)
        if namenode is None:
            raise DeploymentError("No NameNode host assigned")

        self._log(f"[{namenode.label}] Checking NameNode format state")
        try:
            ssh = self.session_manager.get_or_create_session(namenode)
            formatted = format_namenode(ssh, namenode, self.plan, self._line_callback(namenode))
        except HadsError as e:
            raise DeploymentError(f"NameNode format failed on {namenode.label}: {e}") from e
        self._log(f"[{namenode.label}] NameNode {'formatted' if formatted else 'already formatted'}")
        self._emit(EventKind.PROGRESS, "NameNode ready", base + self.STAGE_SPAN // 4)

        def on_failure(target, step, error):
            self._error(f"[{target.label}] {step} failed: {error}")

        def on_line(line):
            self._log(line)

        start_services(self.session_manager, self.plan, on_line, on_failure,
                       should_stop=lambda: self.cancelled)
        self._check_cancelled()

    def run(self):
        """
        Run every stage in order

        Returns:
            True if the pipeline reached COMPLETE
        """
        stage_name = None
        try:
            for number, (stage_name, stage) in enumerate(self.stages):
                self._check_cancelled()
                base = number * self.STAGE_SPAN
                logger.info(f"Stage {number + 1}/{len(self.stages)}: {stage_name}")
                self._emit(EventKind.STAGE, stage_name, base)
                self._emit(EventKind.PROGRESS, f"{stage_name}...", base)
                stage(base)
        except DeploymentCancelled:
            logger.warning(f"Deployment cancelled during {stage_name}")
            self._emit(EventKind.FATAL, CANCELLED_MESSAGE)
            return False
        except Exception as e:
            logger.exception(f"Deployment aborted in stage '{stage_name}'")
            self._emit(EventKind.FATAL, f"{stage_name} failed: {e}")
            return False

        self._emit(EventKind.PROGRESS, "Deployment finished", 100)
        if self._failures:
            summary = f"Deployment finished with {len(self._failures)} host failure(s)"
        else:
            summary = "Deployment completed successfully"
        logger.info(f"✓ {summary}")
        self._emit(EventKind.COMPLETE, summary, 100)
        return True


class DeploymentHandle:
    """Caller side of a deployment running on a background thread"""

    def __init__(self, orchestrator, thread):
        self.orchestrator = orchestrator
        self.thread = thread

    @property
    def queue(self):
        return self.orchestrator.events

    def events(self, timeout=None):
        """
        Yield events as they arrive, ending after the terminal event

        Args:
            timeout: Seconds to wait for each event (None waits forever)

        Raises:
            queue.Empty: If no event arrives within timeout
        """
        while True:
            event = self.orchestrator.events.get(timeout=timeout)
            yield event
            if event.is_terminal:
                return

    def cancel(self):
        self.orchestrator.cancel()

    def join(self, timeout=None):
        self.thread.join(timeout)
        return not self.thread.is_alive()

    def is_running(self):
        return self.thread.is_alive()


def start_deployment(plan, session_manager, events=None):
    """
    Start the deployment pipeline on a background daemon thread

    Args:
        plan: DeploymentPlan
        session_manager: SessionManager shared with the caller
        events: Optional queue.Queue receiving DeploymentEvent objects

    Returns:
        DeploymentHandle
    """
    orchestrator = DeploymentOrchestrator(plan, session_manager, events)
    thread = threading.Thread(target=orchestrator.run, name='hads-deploy', daemon=True)
    logger.info(f"Starting deployment to {len(plan.targets)} host(s)")
    thread.start()
    return DeploymentHandle(orchestrator, thread)
