"""Tests for the scheduled-prompt service and the service manager."""

from __future__ import annotations

import pytest

from conftest import FakeMessenger, text_response
from noga_bot.config import SchedulerServiceConfig
from noga_bot.core.types import Role
from noga_bot.services.base import Service
from noga_bot.services.scheduler import MAINTENANCE_JOB_ID, SCHEDULER_SENDER, SchedulerService
from noga_bot.services.service_manager import ServiceManager
from noga_bot.storage.models import ConversationTurn, ScheduledPrompt


@pytest.fixture
def make_scheduler(engine, admin_repo, conversation_repo, messenger):
    def _make(destination: str | None = "family-chat", adapter: FakeMessenger | None = None, **config) -> SchedulerService:
        return SchedulerService(
            config=SchedulerServiceConfig(**config),
            engine=engine,
            admin_repo=admin_repo,
            conversation_repo=conversation_repo,
            messenger=adapter or messenger,
            broadcast_destination=destination,
        )

    return _make


def _prompt(text: str = "Give the family a morning summary") -> ScheduledPrompt:
    return ScheduledPrompt(id=1, name="morning", cron_expression="0 7 * * *", prompt=text)


class TestReload:
    @pytest.mark.asyncio
    async def test_registers_enabled_prompts(self, make_scheduler, admin_repo) -> None:
        first = await admin_repo.add_scheduled_prompt("morning", "0 7 * * *", "Morning summary")
        await admin_repo.add_scheduled_prompt("paused", "0 8 * * *", "Paused", enabled=False)
        scheduler = make_scheduler()

        result = await scheduler.reload()

        assert result.loaded == ["morning"]
        assert scheduler.prompt_job_ids() == [f"prompt:{first}"]

    @pytest.mark.asyncio
    async def test_invalid_cron_is_rejected_not_registered(self, make_scheduler, admin_repo, db) -> None:
        await admin_repo.add_scheduled_prompt("morning", "0 7 * * *", "Morning summary")
        await db.conn.execute(
            "INSERT INTO scheduled_prompts (name, cron_expression, prompt) VALUES (?, ?, ?)",
            ("broken", "every day at 7", "Never runs"),
        )
        await db.conn.commit()
        scheduler = make_scheduler()

        result = await scheduler.reload()

        assert result.loaded == ["morning"]
        assert "broken" in result.rejected
        assert len(scheduler.prompt_job_ids()) == 1

    @pytest.mark.asyncio
    async def test_reload_replaces_previous_jobs(self, make_scheduler, admin_repo) -> None:
        prompt_id = await admin_repo.add_scheduled_prompt("morning", "0 7 * * *", "Morning summary")
        scheduler = make_scheduler()
        await scheduler.reload()

        await admin_repo.delete_scheduled_prompt(prompt_id)
        result = await scheduler.reload()

        assert result.loaded == []
        assert scheduler.prompt_job_ids() == []

    @pytest.mark.asyncio
    async def test_start_registers_maintenance_and_stops(self, make_scheduler) -> None:
        scheduler = make_scheduler()

        await scheduler.start()
        try:
            assert await scheduler.health_check()
            assert MAINTENANCE_JOB_ID in [j.id for j in scheduler._scheduler.get_jobs()]
        finally:
            await scheduler.stop()

        assert not await scheduler.health_check()


class TestFire:
    @pytest.mark.asyncio
    async def test_answer_is_sent_to_broadcast_destination(self, make_scheduler, fake_ai, messenger) -> None:
        fake_ai.responses = [text_response("בוקר טוב משפחה!")]
        scheduler = make_scheduler()

        await scheduler.fire(_prompt())

        assert [(m.destination, m.text) for m in messenger.sent] == [("family-chat", "בוקר טוב משפחה!")]

    @pytest.mark.asyncio
    async def test_prompt_runs_without_history(self, make_scheduler, fake_ai, conversation_repo) -> None:
        await conversation_repo.save_turn(ConversationTurn(sender=SCHEDULER_SENDER, role=Role.USER, content="old"))
        await conversation_repo.save_turn(ConversationTurn(sender=SCHEDULER_SENDER, role=Role.ASSISTANT, content="x"))
        fake_ai.responses = [text_response("ok")]
        scheduler = make_scheduler()

        await scheduler.fire(_prompt("Summarize today"))

        assert fake_ai.calls[0]["messages"] == [{"role": "user", "content": "Summarize today"}]

    @pytest.mark.asyncio
    async def test_skipped_when_messenger_not_ready(self, make_scheduler, fake_ai) -> None:
        offline = FakeMessenger(ready=False)
        scheduler = make_scheduler(adapter=offline)

        await scheduler.fire(_prompt())

        assert fake_ai.calls == []
        assert offline.sent == []

    @pytest.mark.asyncio
    async def test_skipped_without_destination(self, make_scheduler, fake_ai, messenger) -> None:
        scheduler = make_scheduler(destination=None)

        await scheduler.fire(_prompt())

        assert fake_ai.calls == []
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, make_scheduler, fake_ai, messenger) -> None:
        fake_ai.responses = [RuntimeError("model down")]
        scheduler = make_scheduler()

        await scheduler.fire(_prompt())

        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_empty_answer_is_not_sent(self, make_scheduler, fake_ai, messenger) -> None:
        fake_ai.responses = [text_response("   ")]
        scheduler = make_scheduler()

        await scheduler.fire(_prompt())

        assert messenger.sent == []


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_prunes_to_configured_retention(self, make_scheduler, conversation_repo) -> None:
        for i in range(5):
            await conversation_repo.save_turn(ConversationTurn(sender="u1", role=Role.USER, content=f"m{i}"))
        scheduler = make_scheduler(history_keep_last=2)

        assert await scheduler.run_maintenance() == 3
        assert len(await conversation_repo.get_recent_turns("u1")) == 2


class RecordingService(Service):
    def __init__(self, name: str, log: list[str], fail: bool = False, critical: bool = False):
        self._name = name
        self._log = log
        self._fail = fail
        self.critical = critical

    @property
    def service_name(self) -> str:
        return self._name

    async def start(self) -> None:
        if self._fail:
            raise RuntimeError(f"{self._name} failed")
        self._log.append(f"start:{self._name}")

    async def stop(self) -> None:
        self._log.append(f"stop:{self._name}")

    async def health_check(self) -> bool:
        return not self._fail


class TestServiceManager:
    @pytest.mark.asyncio
    async def test_stops_in_reverse_order(self) -> None:
        log: list[str] = []
        manager = ServiceManager()
        manager.add(RecordingService("a", log))
        manager.add(RecordingService("b", log))

        await manager.start_all()
        await manager.stop_all()

        assert log == ["start:a", "start:b", "stop:b", "stop:a"]

    @pytest.mark.asyncio
    async def test_non_critical_failure_is_skipped(self) -> None:
        log: list[str] = []
        manager = ServiceManager()
        manager.add(RecordingService("flaky", log, fail=True))
        manager.add(RecordingService("b", log))

        await manager.start_all()

        assert log == ["start:b"]
        assert await manager.health_check_all() == {"flaky": False, "b": True}

    @pytest.mark.asyncio
    async def test_critical_failure_aborts_startup(self) -> None:
        manager = ServiceManager()
        manager.add(RecordingService("core", [], fail=True, critical=True))

        with pytest.raises(RuntimeError):
            await manager.start_all()
