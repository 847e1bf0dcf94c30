"""
Exception types raised by the deployment engine
"""


class HadsError(Exception):
    """Base exception for all hads errors"""


class ValidationError(HadsError, ValueError):
    """Invalid user input, raised before any network activity"""

    def __init__(self, message, field=None, value=None):
        super().__init__(message)
        self.message = message
        self.field = field
        # Never keep a password in an exception that may be logged
        self.value = '***' if field == 'password' else value

    @property
    def detailed_message(self):
        return f"Field '{self.field}' is invalid: {self.message} (value: '{self.value}')"


class HostConnectionError(HadsError):
    """
    Transport level fault against a single host

    Carries the offending address and a best-effort ConnectionStatus so that
    callers can turn it into a per-host outcome.
    """

    def __init__(self, message, status=None, address=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.address = address

    @property
    def detailed_message(self):
        description = self.status.description if self.status else 'unknown'
        return f"Host {self.address} connection failed: {description} - {self.message}"

    def __repr__(self):
        return (f"HostConnectionError(status={self.status}, address={self.address!r}, "
                f"message={self.message!r})")


class CommandFailedError(HadsError):
    """A provisioning command exited with a nonzero status"""

    def __init__(self, address, outcome):
        detail = (outcome.stderr or outcome.stdout or '').strip()
        message = f"command '{outcome.command}' exited with {outcome.exit_code}"
        if detail:
            message += f": {detail.splitlines()[-1]}"
        super().__init__(message)
        self.address = address
        self.outcome = outcome


class VaultError(HadsError):
    """Key material could not be loaded/stored or an envelope is malformed"""


class DeploymentError(HadsError):
    """A deployment step could not be carried out"""
