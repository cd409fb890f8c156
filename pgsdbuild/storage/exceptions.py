"""Custom exceptions for installation and image operations.

This module defines a hierarchy of exceptions so callers can tell a bad
configuration apart from a missing tool or a failed external command, and
so the installer can report exactly which stage stopped.

Exception Hierarchy:
    PgsdError (base)
        ├── CommandError
        │   └── PipelineError
        ├── InstallError
        │   ├── ValidationError
        │   │   └── MissingArtifactError
        │   ├── RequirementsError
        │   └── StageError
        ├── BootCodeNotFoundError
        ├── HybridBootError
        └── FetchError

Usage:
    from pgsdbuild.storage.exceptions import StageError

    try:
        installer.install(config)
    except StageError as error:
        print(f"failed during {error.stage.value}: {error}")
"""

from __future__ import annotations

from typing import Optional, Sequence

from pgsdbuild.domain.models import InstallStage


class PgsdError(Exception):
    """Base exception for all pgsdbuild operations."""



class CommandError(PgsdError):
    """An external program exited non-zero or could not be started."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        msg = f"Command failed ({' '.join(self.command)}): exit status {returncode}"
        if output:
            msg += f"\nOutput: {output}"
        super().__init__(msg)


class PipelineError(CommandError):
    """One side of a producer | consumer pipe failed.

    ``failed_side`` is ``"producer"`` whenever the producer failed, even if
    the consumer failed afterwards on truncated input, and ``"consumer"``
    only when the producer succeeded or was killed by the consumer closing
    the pipe. ``stage`` is the caller supplied name of the failed side, e.g.
    ``"decompress"`` or ``"receive"``.
    """

    def __init__(
        self,
        stage: str,
        failed_side: str,
        producer: Sequence[str],
        consumer: Sequence[str],
        producer_returncode: Optional[int],
        consumer_returncode: Optional[int],
        producer_stderr: str = "",
        consumer_stderr: str = "",
    ):
        self.stage = stage
        self.failed_side = failed_side
        self.producer = list(producer)
        self.consumer = list(consumer)
        self.producer_returncode = producer_returncode
        self.consumer_returncode = consumer_returncode
        self.producer_stderr = producer_stderr
        self.consumer_stderr = consumer_stderr
        if failed_side == "producer":
            failed, returncode, output = producer, producer_returncode, producer_stderr
        else:
            failed, returncode, output = consumer, consumer_returncode, consumer_stderr
        super().__init__(failed, returncode if returncode is not None else -1, output)
        details = [f"{stage} stage failed: {' '.join(failed)} exited {returncode}"]
        if producer_stderr:
            details.append(f"{self.producer[0]} stderr: {producer_stderr}")
        if consumer_stderr:
            details.append(f"{self.consumer[0]} stderr: {consumer_stderr}")
        self.args = ("\n".join(details),)


class InstallError(PgsdError):
    """Base exception for the installation pipeline."""

    def __init__(
        self,
        message: str,
        stage: Optional[InstallStage] = None,
        completed_stages: Optional[Sequence[InstallStage]] = None,
    ):
        self.stage = stage
        self.completed_stages = list(completed_stages or [])
        super().__init__(message)

    @property
    def reached_stage(self) -> Optional[InstallStage]:
        """Last stage that finished before the failure, if any."""
        return self.completed_stages[-1] if self.completed_stages else None


class ValidationError(InstallError):
    """Installation configuration is incomplete or malformed."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(
            f"invalid installation configuration: {reason}",
            stage=InstallStage.VALIDATING,
        )


class MissingArtifactError(ValidationError):
    """A required file is absent from the image directory."""

    def __init__(self, path: str, filename: str, required: Sequence[str]):
        self.path = path
        self.filename = filename
        self.required = list(required)
        super().__init__(
            "image_path",
            f"required file missing: {filename}\n"
            f"The image directory must contain: {', '.join(self.required)}",
        )


class RequirementsError(InstallError):
    """Host is missing tools or privileges needed to install."""

    def __init__(self, missing_tools: Sequence[str] = (), not_root: bool = False):
        self.missing_tools = list(missing_tools)
        self.not_root = not_root
        problems = []
        if self.missing_tools:
            problems.append(
                f"required commands not found: {', '.join(self.missing_tools)}\n"
                "Please ensure these tools are installed and in PATH"
            )
        if not_root:
            problems.append(
                "installation must be run as root\nTry: sudo pgsd-inst"
            )
        super().__init__(
            "system requirements not met: " + "\n".join(problems),
            stage=InstallStage.CHECKING_REQUIREMENTS,
        )


class StageError(InstallError):
    """A destructive installation stage failed.

    Nothing is rolled back: ``completed_stages`` tells the operator how far
    the disk got before ``stage`` failed.
    """

    def __init__(
        self,
        stage: InstallStage,
        cause: Exception,
        completed_stages: Sequence[InstallStage] = (),
        hint: str = "",
    ):
        self.cause = cause
        self.hint = hint
        msg = f"{stage.value} failed: {cause}"
        if hint:
            msg += f"\nHint: {hint}"
        super().__init__(msg, stage=stage, completed_stages=completed_stages)


class BootCodeNotFoundError(PgsdError):
    """None of the boot code candidates exist."""

    def __init__(self, candidates: Sequence[str]):
        self.candidates = [str(candidate) for candidate in candidates]
        super().__init__(
            "no suitable boot code found; checked: " + ", ".join(self.candidates)
        )


class HybridBootError(PgsdError):
    """Writing the MBR boot structures into an ISO failed."""

    def __init__(self, iso_path: str, reason: str):
        self.iso_path = str(iso_path)
        self.reason = reason
        super().__init__(f"Cannot make {iso_path} hybrid bootable: {reason}")


class FetchError(PgsdError):
    """Downloading a distribution file failed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download {url}: {reason}")
