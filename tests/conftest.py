"""
Pytest configuration and shared fixtures for pgsdbuild tests.

This module provides common fixtures and utilities used across all test modules.
No fixture here touches a real disk or pool: pipeline components get a
``FakeRunner`` that records every command instead of executing it.
"""

from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest
from loguru import logger

from pgsdbuild.domain import EFI_IMAGE_NAME, MANIFEST_NAME, ROOT_STREAM_NAME
from pgsdbuild.storage.commands import CommandResult


# ==============================================================================
# Command Runner Fakes
# ==============================================================================


class FakeRunner:
    """Records commands instead of running them.

    Every command is appended to ``calls`` as a list of strings. Pipelines
    are recorded as ``[producer..., "|", consumer...]``. ``fail()`` makes
    any command starting with the given words raise the given error, and
    ``on()`` runs a side effect for commands that succeed. A pipeline with
    ``stdout_path`` writes ``piped_output`` there before a failure is
    raised, as a real pipe would have.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.pipelines: List[Dict] = []
        self.outputs: Dict[Tuple[str, ...], str] = {}
        self.failures: List[Tuple[Tuple[str, ...], Exception]] = []
        self.actions: List[Tuple[Tuple[str, ...], Callable[[List[str]], None]]] = []
        self.best_effort_returncode = 1
        self.missing_programs: set = set()
        self.piped_output = b"\xfd7zXZ\x00stream"

    def fail(self, *prefix: str, error: Exception) -> None:
        self.failures.append((tuple(prefix), error))

    def on(self, *prefix: str, action: Callable[[List[str]], None]) -> None:
        self.actions.append((tuple(prefix), action))

    def _check(self, command: List[str]) -> None:
        for prefix, error in self.failures:
            if tuple(command[: len(prefix)]) == prefix:
                raise error
        for prefix, action in self.actions:
            if tuple(command[: len(prefix)]) == prefix:
                action(command)

    def which(self, program):
        if program in self.missing_programs:
            return None
        return f"/usr/bin/{program}"

    def run(self, program, args=()):
        command = [program, *args]
        self.calls.append(command)
        self._check(command)
        return self.outputs.get(tuple(command), "")

    def run_in_dir(self, program, args, work_dir):
        return self.run(program, args)

    def run_best_effort(self, program, args=()):
        command = [program, *args]
        self.calls.append(command)
        return CommandResult(command, self.best_effort_returncode, "")

    def run_piped(
        self,
        producer,
        producer_args,
        consumer,
        consumer_args,
        *,
        producer_stage="producer",
        consumer_stage="consumer",
        stdout_path=None,
    ):
        command = [producer, *producer_args, "|", consumer, *consumer_args]
        self.calls.append(command)
        self.pipelines.append(
            {
                "producer": [producer, *producer_args],
                "consumer": [consumer, *consumer_args],
                "producer_stage": producer_stage,
                "consumer_stage": consumer_stage,
                "stdout_path": stdout_path,
            }
        )
        if stdout_path is not None:
            Path(stdout_path).write_bytes(self.piped_output)
        self._check(command)

    @property
    def programs(self) -> List[str]:
        return [command[0] for command in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fixture providing a recording command runner."""
    return FakeRunner()


# ==============================================================================
# Image Artifact Fixtures
# ==============================================================================


@pytest.fixture
def make_image_dir(tmp_path) -> Callable[..., Path]:
    """
    Fixture providing a factory for image directories.

    The factory creates ``root.zfs.xz``, ``efi.img`` and ``manifest.toml``
    (all non-empty) except for the names passed in ``missing``.
    """

    def factory(name: str = "a", missing=()) -> Path:
        image_dir = tmp_path / "img" / name
        image_dir.mkdir(parents=True)
        contents = {
            ROOT_STREAM_NAME: b"\xfd7zXZ\x00stream",
            EFI_IMAGE_NAME: b"\xeb\x3c\x90efi",
            MANIFEST_NAME: b'id = "a"\nversion = "0.1.0"\n',
        }
        for filename, data in contents.items():
            if filename not in missing:
                (image_dir / filename).write_bytes(data)
        return image_dir

    return factory


@pytest.fixture
def image_dir(make_image_dir) -> Path:
    """Fixture providing a complete image directory."""
    return make_image_dir()


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records() -> List[dict]:
    """Fixture capturing loguru records emitted during the test."""
    records: List[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    try:
        logger.remove(handler_id)
    except ValueError:
        # Already removed by a test that reconfigured logging
        pass
