"""
tuner_errors.py - Exception taxonomy for build-helium

Each fatal error carries the process exit code the CLI reports for it.
"""


class TunerError(Exception):
    """Base class for all build-helium errors."""
    exit_code = 1


class EnvironmentDetectionError(TunerError):
    """Neither the BSD-style nor the Linux-style host probe is usable."""
    exit_code = 1


class PreflightError(TunerError):
    """A required external capability (resource-usage instrument) is absent."""
    exit_code = 1


class PreconditionError(TunerError):
    """Not run from a Gradle project root, or invalid run-count configuration."""
    exit_code = 2


class AllCandidatesFailedError(TunerError):
    """Every candidate in the sweep produced sentinel metrics."""
    exit_code = 3


class SessionCancelled(TunerError):
    """The sweep was interrupted by SIGINT/SIGTERM."""
    exit_code = 130


class CandidateMeasurementFailure(Exception):
    """A measured iteration exited non-zero. Recovered inside the runner."""

    def __init__(self, candidate_name: str, iteration: int, returncode: int):
        self.candidate_name = candidate_name
        self.iteration = iteration
        self.returncode = returncode
        super().__init__(
            f"{candidate_name}: measured iteration {iteration} exited with {returncode}"
        )
