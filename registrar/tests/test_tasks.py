"""
Tests for the registration task runner and result channel.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from evocore.crypto import hash256
from evocore.models import Identity, QualifiedIdentity
from registrar.errors import IdentityAlreadyExistsError
from registrar.tasks import (
    RegistrationPhase,
    RegistrationState,
    ResultSender,
    TaskError,
    TaskSuccess,
    run_register_identity_task,
)


@pytest.fixture
def qualified_identity() -> QualifiedIdentity:
    return QualifiedIdentity(identity=Identity.new_with_id_and_keys(hash256(b"task"), {}))


class TestResultSender:
    @pytest.mark.asyncio
    async def test_send(self):
        sender = ResultSender()
        assert await sender.send(TaskError("boom"))
        assert sender.queue.get_nowait() == TaskError("boom")

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        queue: asyncio.Queue = asyncio.Queue()
        sender = ResultSender(queue)
        sender.close()
        assert not await sender.send(TaskError("late"))
        assert queue.empty()


class TestRunRegisterIdentityTask:
    @pytest.mark.asyncio
    async def test_success_sends_one_message(self, qualified_identity):
        registrar = MagicMock()
        registrar.register_identity = AsyncMock(return_value=qualified_identity)
        sender = ResultSender()
        state = RegistrationState()

        result = await run_register_identity_task(registrar, MagicMock(), sender, state)

        assert result == TaskSuccess(qualified_identity)
        assert sender.queue.qsize() == 1
        assert state.phase == RegistrationPhase.SUCCEEDED

    @pytest.mark.asyncio
    async def test_error_is_reported_as_message(self):
        registrar = MagicMock()
        registrar.register_identity = AsyncMock(side_effect=IdentityAlreadyExistsError("abc"))
        sender = ResultSender()
        state = RegistrationState()

        result = await run_register_identity_task(registrar, MagicMock(), sender, state)

        assert result == TaskError("Identity with id abc already exists")
        assert sender.queue.get_nowait() == result
        assert state.phase == RegistrationPhase.FAILED
        assert state.last_error == result.message

    @pytest.mark.asyncio
    async def test_in_progress_while_running(self, qualified_identity):
        state = RegistrationState()
        observed = []

        async def register(info):
            observed.append(state.in_progress)
            return qualified_identity

        registrar = MagicMock()
        registrar.register_identity = AsyncMock(side_effect=register)

        await run_register_identity_task(registrar, MagicMock(), ResultSender(), state)

        assert observed == [True]
        assert not state.in_progress

    @pytest.mark.asyncio
    async def test_closed_channel_does_not_raise(self, qualified_identity):
        registrar = MagicMock()
        registrar.register_identity = AsyncMock(return_value=qualified_identity)
        sender = ResultSender()
        sender.close()

        result = await run_register_identity_task(registrar, MagicMock(), sender)

        assert isinstance(result, TaskSuccess)
