"""APScheduler-based trigger for scheduled prompts and housekeeping jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from noga_bot.config import SchedulerServiceConfig
from noga_bot.core.cron import parse_cron
from noga_bot.errors import ValidationError
from noga_bot.log import get_logger
from noga_bot.messenger.models import OutgoingMessage
from noga_bot.services.base import Service
from noga_bot.storage.models import ScheduledPrompt

if TYPE_CHECKING:
    from noga_bot.ai.engine import ConversationEngine
    from noga_bot.messenger.base import MessengerAdapter
    from noga_bot.storage.admin_repo import AdminRepository
    from noga_bot.storage.conversation_repo import ConversationRepository

logger = get_logger(__name__)

SCHEDULER_SENDER = "system_scheduler"
PROMPT_JOB_PREFIX = "prompt:"
MAINTENANCE_JOB_ID = "maintenance"


@dataclass
class ReloadResult:
    loaded: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)


class SchedulerService(Service):
    """Fires enabled scheduled prompts through the engine and posts the answer to the broadcast chat."""

    critical = True

    def __init__(
        self,
        config: SchedulerServiceConfig,
        engine: ConversationEngine,
        admin_repo: AdminRepository,
        conversation_repo: ConversationRepository,
        messenger: MessengerAdapter,
        broadcast_destination: Optional[str],
    ):
        self._config = config
        self._engine = engine
        self._admin_repo = admin_repo
        self._conversation_repo = conversation_repo
        self._messenger = messenger
        self._destination = broadcast_destination
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        self._scheduler.add_job(
            self.run_maintenance,
            parse_cron(self._config.maintenance_cron, self._config.timezone),
            id=MAINTENANCE_JOB_ID,
            replace_existing=True,
        )
        await self.reload()
        self._scheduler.start()
        logger.info("scheduler_started", timezone=self._config.timezone)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def prompt_job_ids(self) -> list[str]:
        return [j.id for j in self._scheduler.get_jobs() if j.id.startswith(PROMPT_JOB_PREFIX)]

    async def reload(self) -> ReloadResult:
        """Drop every prompt job and register the enabled prompts again.

        Prompts whose cron expression does not validate are rejected and
        reported; they are never registered.
        """
        for job_id in self.prompt_job_ids():
            self._scheduler.remove_job(job_id)

        result = ReloadResult()
        for prompt in await self._admin_repo.enabled_scheduled_prompts():
            try:
                trigger = parse_cron(prompt.cron_expression, self._config.timezone)
            except ValidationError as e:
                logger.error(
                    "scheduled_prompt_rejected",
                    name=prompt.name,
                    cron=prompt.cron_expression,
                    error=str(e),
                )
                result.rejected[prompt.name] = str(e)
                continue
            self._scheduler.add_job(
                self.fire,
                trigger,
                id=f"{PROMPT_JOB_PREFIX}{prompt.id}",
                kwargs={"prompt": prompt},
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            result.loaded.append(prompt.name)

        logger.info("scheduled_prompts_loaded", loaded=len(result.loaded), rejected=len(result.rejected))
        return result

    async def fire(self, prompt: ScheduledPrompt) -> None:
        """Run one scheduled prompt. Missed or failed firings are never retried."""
        logger.info("scheduled_prompt_firing", name=prompt.name)
        if not self._destination:
            logger.warning("scheduled_prompt_skipped", name=prompt.name, reason="no broadcast destination")
            return
        if not self._messenger.is_ready:
            logger.warning("scheduled_prompt_skipped", name=prompt.name, reason="messenger not ready")
            return

        try:
            response = await self._engine.process(SCHEDULER_SENDER, prompt.prompt, keep_history=False)
            if response.strip():
                await self._messenger.send_message(
                    OutgoingMessage(destination=self._destination, text=response)
                )
                logger.info("scheduled_prompt_sent", name=prompt.name)
            else:
                logger.warning("scheduled_prompt_empty_response", name=prompt.name)
        except Exception as e:
            logger.error("scheduled_prompt_failed", name=prompt.name, error=str(e), exc_info=True)

    async def run_maintenance(self) -> int:
        """Prune conversation history down to the configured retention per sender."""
        try:
            deleted = await self._conversation_repo.prune_history(self._config.history_keep_last)
        except Exception as e:
            logger.error("maintenance_failed", error=str(e))
            return 0
        logger.info("history_pruned", deleted=deleted, keep_last=self._config.history_keep_last)
        return deleted
