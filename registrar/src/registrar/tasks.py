"""
Background task plumbing: results are delivered to the UI over an asyncio queue.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Union

from loguru import logger

from evocore.models import QualifiedIdentity
from registrar.registration import IdentityRegistrar, IdentityRegistrationInfo


@dataclass(frozen=True)
class TaskSuccess:
    identity: QualifiedIdentity


@dataclass(frozen=True)
class TaskError:
    message: str


TaskResult = Union[TaskSuccess, TaskError]


class ResultSender:
    """Sending side of the result channel. Sends after close() are dropped."""

    def __init__(self, queue: asyncio.Queue | None = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, result: TaskResult) -> bool:
        if self._closed:
            logger.debug(f"Result channel closed, dropping {type(result).__name__}")
            return False
        await self.queue.put(result)
        return True


class RegistrationPhase(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RegistrationState:
    """Lets a UI observe whether a registration attempt is in flight."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._phase = RegistrationPhase.IDLE
        self.last_error: str | None = None

    @property
    def phase(self) -> RegistrationPhase:
        with self._lock:
            return self._phase

    @property
    def in_progress(self) -> bool:
        return self.phase == RegistrationPhase.IN_PROGRESS

    def set(self, phase: RegistrationPhase, error: str | None = None) -> None:
        with self._lock:
            self._phase = phase
            self.last_error = error


async def run_register_identity_task(
    registrar: IdentityRegistrar,
    info: IdentityRegistrationInfo,
    sender: ResultSender,
    state: RegistrationState | None = None,
) -> TaskResult:
    """Run one registration attempt and send exactly one result."""
    if state is not None:
        state.set(RegistrationPhase.IN_PROGRESS)

    try:
        identity = await registrar.register_identity(info)
        result: TaskResult = TaskSuccess(identity)
        if state is not None:
            state.set(RegistrationPhase.SUCCEEDED)
    except Exception as e:
        logger.error(f"Identity registration failed: {e}")
        result = TaskError(str(e))
        if state is not None:
            state.set(RegistrationPhase.FAILED, str(e))

    await sender.send(result)
    return result
