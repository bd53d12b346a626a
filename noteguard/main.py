"""
NoteGuard — Composition Root
=============================

What:  Builds a fully wired set of NoteGuard components and configures
       logging.
How:   create_guard() constructs every store explicitly (no module-level
       singletons) and hands the same instances to the services that share
       them. Hosts keep the returned NoteGuard for the life of the process.
Who:   Host application startup code; integration tests.

Wiring:
    Settings ──▶ TokenUsageStore ──▶ TokenMonitor ──┐
             ──▶ ErrorLogStore ────▶ ErrorLogger ───┼──▶ RetryOrchestrator ──┐
             ──▶ FallbackProvider, FallbackUsageTracker ───────────────────┼──▶ NoteAIService
             ──▶ LLMService (GeminiService by default) ────────────────────┘
"""

import asyncio
import logging
import sys
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional

from noteguard.config import Settings, settings
from noteguard.maintenance import run_periodic_sweep, sweep_once
from noteguard.monitoring.alerting import AlertChannel, AlertDispatcher
from noteguard.monitoring.error_logger import ErrorLogger, ErrorLogStore
from noteguard.monitoring.token_monitor import TokenMonitor, TokenUsageStore
from noteguard.schemas.usage import LimitConfig
from noteguard.services.fallback import FallbackProvider, FallbackUsageTracker
from noteguard.services.gemini_service import GeminiService
from noteguard.services.llm_base import LLMService
from noteguard.services.note_ai_service import NoteAIService
from noteguard.services.retry import RetryOrchestrator

logger = logging.getLogger(__name__)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    When:   Once at startup, before building components.
    """
    logging.basicConfig(
        level=getattr(logging, level or settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # gRPC/HTTP chatter from the Gemini SDK
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class NoteGuard:
    """Container for one wired set of components."""

    def __init__(
        self,
        config: Settings,
        usage_store: TokenUsageStore,
        token_monitor: TokenMonitor,
        error_store: ErrorLogStore,
        error_logger: ErrorLogger,
        fallback_provider: FallbackProvider,
        fallback_tracker: FallbackUsageTracker,
        orchestrator: RetryOrchestrator,
        note_ai: Optional[NoteAIService],
    ):
        self.config = config
        self.usage_store = usage_store
        self.token_monitor = token_monitor
        self.error_store = error_store
        self.error_logger = error_logger
        self.fallback_provider = fallback_provider
        self.fallback_tracker = fallback_tracker
        self.orchestrator = orchestrator
        self.note_ai = note_ai

    @property
    def prunable_stores(self):
        return {
            "token_usage": self.usage_store,
            "error_logs": self.error_store,
            "fallback_usage": self.fallback_tracker,
        }

    def sweep(self):
        return sweep_once(self.prunable_stores)

    def start_sweeper(self) -> Optional["asyncio.Task[None]"]:
        """
        Start the background sweep on the running loop.

        Returns:
            The task (cancel it on shutdown), or None when
            sweep_interval_seconds is 0.
        """
        interval = self.config.sweep_interval_seconds
        if not interval:
            return None
        return asyncio.get_running_loop().create_task(
            run_periodic_sweep(self.prunable_stores, interval)
        )


def create_guard(
    config: Optional[Settings] = None,
    llm: Optional[LLMService] = None,
    clock: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    alert_channels: Optional[Iterable[AlertChannel]] = None,
    with_default_alerts: bool = True,
    use_gemini: bool = True,
) -> NoteGuard:
    """
    Build a NoteGuard from settings.

    Args:
        config:              Settings (defaults to the module-level settings).
        llm:                 Provider adapter; a GeminiService is created when
                             omitted and `use_gemini` is True.
        clock:               Shared time source for every store.
        sleep:               Backoff sleep used by the orchestrator.
        alert_channels:      Alert transports; logging channels by default.
        with_default_alerts: Register the API-key / system / error-rate rules.
        use_gemini:          When False and no `llm` is given, NoteAIService
                             is not built.

    Raises:
        ValueError: production settings missing a required value.
    """
    config = config or settings
    if config.environment == "production":
        config.validate_required_for_production()

    usage_store = TokenUsageStore(
        limits=LimitConfig(
            daily_limit=config.token_daily_limit,
            hourly_limit=config.token_hourly_limit,
            per_request_limit=config.token_per_request_limit,
            warning_threshold=config.token_warning_threshold,
        ),
        retention=timedelta(days=config.usage_retention_days),
        clock=clock,
    )
    token_monitor = TokenMonitor(usage_store)

    dispatcher = AlertDispatcher(
        channels=alert_channels,
        max_attempts=config.alert_delivery_attempts,
        clock=clock,
    )
    error_store = ErrorLogStore(
        dispatcher=dispatcher,
        retention=timedelta(days=config.error_log_retention_days),
        alert_cooldown=timedelta(seconds=config.alert_cooldown_seconds),
        clock=clock,
    )
    error_logger = ErrorLogger(
        error_store,
        environment=config.environment,
        version=config.app_version,
    )
    if with_default_alerts:
        error_logger.setup_critical_alerts()

    fallback_provider = FallbackProvider(clock=clock)
    fallback_tracker = FallbackUsageTracker(
        retention=timedelta(days=config.fallback_retention_days),
        clock=clock,
    )
    orchestrator = RetryOrchestrator(token_monitor, error_logger, sleep=sleep, clock=clock)

    if llm is None and use_gemini:
        llm = GeminiService(
            api_key=config.gemini_api_key,
            model_name=config.gemini_model,
            max_prompt_tokens=config.gemini_max_prompt_tokens,
            max_output_tokens=config.gemini_max_output_tokens,
        )

    note_ai = None
    if llm is not None:
        note_ai = NoteAIService(
            llm,
            orchestrator,
            fallback_provider,
            fallback_tracker,
            max_retries=config.retry_max_attempts,
            base_delay_ms=config.retry_base_delay_ms,
        )

    logger.info(
        "NoteGuard ready (environment=%s, daily_limit=%d, hourly_limit=%d, provider=%s)",
        config.environment,
        config.token_daily_limit,
        config.token_hourly_limit,
        type(llm).__name__ if llm is not None else "none",
    )
    return NoteGuard(
        config=config,
        usage_store=usage_store,
        token_monitor=token_monitor,
        error_store=error_store,
        error_logger=error_logger,
        fallback_provider=fallback_provider,
        fallback_tracker=fallback_tracker,
        orchestrator=orchestrator,
        note_ai=note_ai,
    )
