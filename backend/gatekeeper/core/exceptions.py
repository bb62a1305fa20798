"""Error taxonomy shared by the analysis services, queue and API."""


class GatekeeperError(Exception):
    """Base exception for gatekeeper errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RecoverableProviderError(GatekeeperError):
    """A provider call failed in a way that has a defined fallback path.

    Raised for rate limiting and transient network failures. Callers switch to
    the local working copy instead of failing the job.
    """


class ParseError(GatekeeperError):
    """A single file could not be analyzed by its language strategy."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ConfigurationError(GatekeeperError):
    """The process is misconfigured and must not serve traffic."""


class PayloadValidationError(GatekeeperError):
    """A request or job payload was rejected at the boundary."""


class JobExecutionError(GatekeeperError):
    """A job handler raised while processing a job."""

    def __init__(self, job_id: str, job_name: str, message: str):
        self.job_id = job_id
        self.job_name = job_name
        super().__init__(f"Job {job_id} ({job_name}) failed: {message}")


class AnalysisUnavailableError(GatekeeperError):
    """None of a pull request's files could be read, so no verdict can be given yet."""
