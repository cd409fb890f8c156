"""External command execution.

Every disk, pool and image operation shells out through ``CommandRunner``:

    - run(): run a program, return combined stdout/stderr, raise on failure
    - run_in_dir(): same, with a working directory
    - run_best_effort(): run a program and hand back the result, never raise
      on a non-zero exit (used only for precondition resets)
    - run_piped(): connect one program's stdout to another's stdin through
      an OS pipe, wait for both, and attribute a failure to the right side

The runner keeps no state between calls apart from its logger.
"""

from __future__ import annotations

import shutil
import signal
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Optional, Sequence, Union

from pgsdbuild.logging import LoggerFactory

from .exceptions import CommandError, PipelineError


if TYPE_CHECKING:
    from loguru import Logger


PathLike = Union[str, Path]

# Exit status of a process killed because its reader went away
_SIGPIPE_STATUS = -signal.SIGPIPE


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _read_capture(handle: IO[bytes]) -> str:
    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace").strip()


class CommandRunner:
    """Runs external programs and reports failures as ``CommandError``."""

    def __init__(self, log: Optional[Logger] = None):
        self.log = log or LoggerFactory.for_command()

    def which(self, program: str) -> Optional[str]:
        return shutil.which(program)

    def run(self, program: str, args: Sequence[str] = ()) -> str:
        """Run a command and raise CommandError if it fails."""
        return self._run(program, args, None)

    def run_in_dir(self, program: str, args: Sequence[str], work_dir: PathLike) -> str:
        """Run a command inside ``work_dir`` and raise CommandError if it fails."""
        return self._run(program, args, work_dir)

    def run_best_effort(self, program: str, args: Sequence[str] = ()) -> CommandResult:
        """Run a command whose failure is expected and harmless.

        A non-zero exit, or a program that cannot be started, is returned
        in the result instead of raised.
        """
        command = [program, *args]
        self.log.debug(f"Running best-effort command: {' '.join(command)}")
        try:
            result = self._execute(command, None)
        except CommandError as error:
            result = CommandResult(command, error.returncode, error.output)
        if not result.ok:
            self.log.debug(
                f"Ignoring failure of {' '.join(command)} (rc={result.returncode}): "
                f"{result.output}"
            )
        return result

    def run_piped(
        self,
        producer: str,
        producer_args: Sequence[str],
        consumer: str,
        consumer_args: Sequence[str],
        *,
        producer_stage: str = "producer",
        consumer_stage: str = "consumer",
        stdout_path: Optional[PathLike] = None,
    ) -> None:
        """Run ``producer | consumer`` and wait for both to exit.

        The producer's stdout is handed to the consumer as an OS pipe; no
        data passes through this process. Stderr of each side is captured
        separately. When ``stdout_path`` is given the consumer's stdout is
        written there, otherwise it is captured with its stderr.

        Raises:
            PipelineError: If either side fails. A producer failure wins
                unless it was only killed by SIGPIPE after the consumer died.
        """
        producer_cmd = [producer, *producer_args]
        consumer_cmd = [consumer, *consumer_args]
        self.log.debug(
            f"Running pipeline: {' '.join(producer_cmd)} | {' '.join(consumer_cmd)}"
        )

        with tempfile.TemporaryFile() as producer_err, tempfile.TemporaryFile() as consumer_err:
            stdout_handle = open(stdout_path, "wb") if stdout_path else None
            try:
                try:
                    producer_proc = subprocess.Popen(
                        producer_cmd, stdout=subprocess.PIPE, stderr=producer_err
                    )
                except OSError as error:
                    raise PipelineError(
                        producer_stage,
                        "producer",
                        producer_cmd,
                        consumer_cmd,
                        None,
                        None,
                        producer_stderr=str(error),
                    ) from error

                try:
                    consumer_proc = subprocess.Popen(
                        consumer_cmd,
                        stdin=producer_proc.stdout,
                        stdout=stdout_handle or consumer_err,
                        stderr=consumer_err,
                    )
                except OSError as error:
                    producer_proc.kill()
                    producer_proc.wait()
                    raise PipelineError(
                        consumer_stage,
                        "consumer",
                        producer_cmd,
                        consumer_cmd,
                        producer_proc.returncode,
                        None,
                        consumer_stderr=str(error),
                    ) from error
                finally:
                    # The producer must see EPIPE if the consumer exits early
                    if producer_proc.stdout is not None:
                        producer_proc.stdout.close()

                consumer_rc = consumer_proc.wait()
                producer_rc = producer_proc.wait()
            finally:
                if stdout_handle is not None:
                    stdout_handle.close()

            producer_output = _read_capture(producer_err)
            consumer_output = _read_capture(consumer_err)

        self.log.bind(tags=["command-output"]).trace(
            f"{producer} rc={producer_rc} stderr: {producer_output}"
        )
        self.log.bind(tags=["command-output"]).trace(
            f"{consumer} rc={consumer_rc} output: {consumer_output}"
        )

        if producer_rc == 0 and consumer_rc == 0:
            self.log.debug("Pipeline completed successfully")
            return

        producer_broken_pipe = producer_rc == _SIGPIPE_STATUS and consumer_rc != 0
        if producer_rc != 0 and not producer_broken_pipe:
            failed_side, stage = "producer", producer_stage
        else:
            failed_side, stage = "consumer", consumer_stage
        error = PipelineError(
            stage,
            failed_side,
            producer_cmd,
            consumer_cmd,
            producer_rc,
            consumer_rc,
            producer_stderr=producer_output,
            consumer_stderr=consumer_output,
        )
        self.log.debug(f"Pipeline failed: {error}")
        raise error

    def _run(self, program: str, args: Sequence[str], work_dir: Optional[PathLike]) -> str:
        command = [program, *args]
        if work_dir is not None:
            self.log.debug(f"Running command in {work_dir}: {' '.join(command)}")
        else:
            self.log.debug(f"Running command: {' '.join(command)}")
        result = self._execute(command, work_dir)
        if not result.ok:
            self.log.debug(
                f"Command failed with code {result.returncode}: {result.output}"
            )
            raise CommandError(command, result.returncode, result.output)
        return result.output

    def _execute(self, command: list[str], work_dir: Optional[PathLike]) -> CommandResult:
        try:
            completed = subprocess.run(
                command,
                cwd=work_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as error:
            raise CommandError(command, 127, str(error)) from error
        output = (completed.stdout or "").strip()
        if output:
            self.log.bind(tags=["command-output"]).trace(f"output: {output}")
        self.log.debug(f"Command completed with return code {completed.returncode}")
        return CommandResult(command, completed.returncode, output)
