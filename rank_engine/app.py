"""Application orchestrator: configuration, provider selection and wiring."""

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from rank_engine.models.ranking import SOURCE_MANUAL, RankObservation
from rank_engine.modules.rank_tracker.aggregator import RankAggregator
from rank_engine.modules.rank_tracker.batch import BatchRankRunner, BatchRequest
from rank_engine.modules.rank_tracker.checker import (
    DEFAULT_DEPTH_TIERS,
    DEFAULT_MAX_DEPTH,
    RankChecker,
)
from rank_engine.modules.rank_tracker.difficulty import KeywordDifficultyEstimator
from rank_engine.modules.rank_tracker.errors import RankTimeoutError
from rank_engine.modules.rank_tracker.history import DROP_OUT_FLOOR_RANK, RankHistoryStore
from rank_engine.utils.helpers import normalize_domain, utcnow
from rank_engine.utils.locations import resolve_location
from rank_engine.utils.rate_limiter import PacingGate

logger = logging.getLogger(__name__)

PROVIDER_INCREMENTAL = "incremental"
PROVIDER_BULK = "bulk"
PROVIDER_NAMES = (PROVIDER_INCREMENTAL, PROVIDER_BULK)


def _mask(value: str) -> str:
    if not value:
        return ""
    return value[:3] + "***" if len(value) > 3 else "***"


class RankEngine:
    """Central application class that wires the rank-tracking components.

    Usage::

        engine = RankEngine()
        engine.initialize()
        result = asyncio.run(engine.run_batch({"domain": "example.com", "keywords": ["crm"]}))
        report = engine.monthly_report(domain="example.com")
    """

    def __init__(
        self,
        config_path: str = "config/settings.yaml",
        env_path: str = ".env",
        provider: Any = None,
        llm_client: Any = None,
        database_url: Optional[str] = None,
    ):
        self._config_path = config_path
        self._env_path = env_path
        self._database_url = database_url
        self.config: dict[str, Any] = {}
        self._initialized = False

        self._provider = provider
        self._llm_client = llm_client
        self._gate: Optional[PacingGate] = None
        self._checker: Optional[RankChecker] = None
        self._store: Optional[RankHistoryStore] = None
        self._runner: Optional[BatchRankRunner] = None
        self._aggregator: Optional[RankAggregator] = None
        self._scheduler = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load configuration and environment, then initialise the database."""
        if self._initialized:
            return

        env_file = Path(self._env_path)
        if env_file.exists():
            load_dotenv(env_file)
            logger.info("Loaded environment from %s", self._env_path)

        self.config = self._load_config()

        level_name = os.getenv("LOG_LEVEL") or self.config.get("logging", {}).get("level")
        if level_name:
            logging.getLogger("rank_engine").setLevel(level_name.upper())

        data_dir = self.config.get("app", {}).get("data_dir", "")
        if data_dir:
            Path(data_dir).mkdir(parents=True, exist_ok=True)

        from rank_engine.database import init_db
        db_cfg = self.config.get("database", {})
        init_db(
            database_url=self._database_url or db_cfg.get("url") or None,
            echo=db_cfg.get("echo", False),
        )

        self._initialized = True
        logger.info("RankEngine initialised (provider=%s).", self.provider_name)

    def _load_config(self) -> dict[str, Any]:
        """Load the YAML configuration file."""
        config_file = Path(self._config_path)
        if not config_file.exists():
            logger.warning("Config file not found: %s, using defaults.", self._config_path)
            return {}
        with open(config_file, "r", encoding="utf-8") as fh:
            config = yaml.safe_load(fh) or {}
        logger.info("Configuration loaded from %s", self._config_path)
        return config

    @property
    def _rank_cfg(self) -> dict[str, Any]:
        return self.config.get("rank_tracking", {}) or {}

    # ------------------------------------------------------------------
    # Component wiring
    # ------------------------------------------------------------------

    @property
    def provider_name(self) -> str:
        name = (os.getenv("RANK_API_PROVIDER") or self._rank_cfg.get("provider")
                or PROVIDER_INCREMENTAL)
        return str(name).strip().lower()

    def get_provider(self):
        """Return the active SERP provider, building it on first use."""
        if self._provider is None:
            self._provider = self._build_provider(self.provider_name)
        return self._provider

    def _build_provider(self, name: str):
        providers_cfg = self.config.get("providers", {})
        if name == PROVIDER_BULK:
            from rank_engine.integrations.bulk_page_provider import BulkPageProvider
            cfg = providers_cfg.get(PROVIDER_BULK, {})
            return BulkPageProvider(
                endpoint=cfg.get("endpoint"),
                cost_per_page=cfg.get("cost_per_page", 0.002),
                timeout=cfg.get("timeout", 90.0),
            )
        if name == PROVIDER_INCREMENTAL:
            from rank_engine.integrations.incremental_depth_provider import (
                IncrementalDepthProvider,
            )
            cfg = providers_cfg.get(PROVIDER_INCREMENTAL, {})
            return IncrementalDepthProvider(
                endpoint=cfg.get("endpoint"),
                cost_per_page=cfg.get("cost_per_page", 0.002),
                language_code=cfg.get("language_code", "en"),
                timeout=cfg.get("timeout", 90.0),
            )
        raise ValueError(
            f"Unknown rank provider {name!r}; expected one of {', '.join(PROVIDER_NAMES)}"
        )

    def _get_gate(self) -> PacingGate:
        if self._gate is None:
            serp_cfg = self.config.get("rate_limits", {}).get("serp", {})
            self._gate = PacingGate(
                global_interval=serp_cfg.get("min_interval_seconds", 0.0),
                caller_interval=serp_cfg.get("per_caller_interval_seconds", 0.0),
            )
        return self._gate

    def _get_llm_client(self):
        """Lazy-initialise and return the LLM client."""
        if self._llm_client is None:
            from rank_engine.integrations.llm_client import LLMClient
            llm_cfg = self.config.get("llm", {})
            rl_cfg = self.config.get("rate_limits", {}).get("openai", {})
            self._llm_client = LLMClient(
                model=llm_cfg.get("model", "gpt-4o-mini"),
                temperature=llm_cfg.get("temperature", 0.2),
                timeout=llm_cfg.get("timeout", 30),
                requests_per_minute=rl_cfg.get("requests_per_minute", 60),
                monthly_budget_usd=llm_cfg.get("monthly_budget_usd"),
            )
        return self._llm_client

    def get_checker(self) -> RankChecker:
        if self._checker is None:
            self._checker = RankChecker(
                self.get_provider(),
                depth_tiers=self._rank_cfg.get("depth_tiers", DEFAULT_DEPTH_TIERS),
                max_depth=self._rank_cfg.get("max_depth", DEFAULT_MAX_DEPTH),
                gate=self._get_gate(),
            )
        return self._checker

    def get_store(self) -> RankHistoryStore:
        if self._store is None:
            self._store = RankHistoryStore(
                drop_out_floor_rank=self._rank_cfg.get("drop_out_floor_rank", DROP_OUT_FLOOR_RANK),
            )
        return self._store

    def get_difficulty_estimator(self) -> Optional[KeywordDifficultyEstimator]:
        if not self.config.get("llm", {}).get("difficulty_enabled", True):
            return None
        return KeywordDifficultyEstimator(self._get_llm_client())

    def get_runner(self) -> BatchRankRunner:
        if self._runner is None:
            cfg = self._rank_cfg
            self._runner = BatchRankRunner(
                self.get_checker(),
                self.get_store(),
                difficulty_estimator=self.get_difficulty_estimator(),
                pacing_delay=cfg.get("pacing_delay_seconds", 4.0),
                long_batch_pacing_delay=cfg.get("long_batch_pacing_delay_seconds", 5.0),
                long_batch_threshold=cfg.get("long_batch_threshold", 20),
                max_transient_retries=cfg.get("max_transient_retries", 2),
                retry_base_delay=cfg.get("retry_base_delay_seconds", 2.0),
                failure_warning_rate=cfg.get("failure_warning_rate", 0.3),
                max_keywords=cfg.get("max_keywords_per_batch", 50),
            )
        return self._runner

    def get_aggregator(self) -> RankAggregator:
        if self._aggregator is None:
            self._aggregator = RankAggregator(self.get_store())
        return self._aggregator

    def get_scheduler(self):
        if self._scheduler is None:
            from rank_engine.scheduler import RankScheduler
            sched_cfg = self.config.get("scheduler", {})
            self._scheduler = RankScheduler(
                job_store_url=sched_cfg.get("job_store", "sqlite:///data/scheduler_jobs.db"),
                timezone=sched_cfg.get("timezone", "UTC"),
                max_workers=sched_cfg.get("max_concurrent_jobs", 1),
                config_path=self._config_path,
            )
        return self._scheduler

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def check_keyword(
        self,
        keyword: str,
        domain: str,
        location: Optional[str] = None,
        client_id: Optional[str] = None,
        keyword_id: Optional[str] = None,
        max_depth: Optional[int] = None,
    ) -> dict[str, Any]:
        """Check a single keyword and persist the observation.

        Unlike a batch, provider failures propagate as typed
        :class:`RankCheckError` exceptions.
        """
        self._ensure_initialized()
        location = location or self._rank_cfg.get("default_location")
        outcome = await self.get_checker().check(keyword, domain, location, max_depth)

        difficulty = None
        estimator = self.get_difficulty_estimator()
        if estimator is not None:
            difficulty = await estimator.estimate(keyword, outcome.location)

        saved = self.get_store().record(
            outcome.to_observation(client_id=client_id, keyword_id=keyword_id, difficulty=difficulty)
        )
        result = saved.to_dict()
        result.update({
            "found": outcome.found,
            "mode": outcome.mode,
            "tiersQueried": outcome.tiers_queried,
        })
        return result

    async def run_batch(
        self,
        request: BatchRequest | dict[str, Any],
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Run a batch with an optional overall timeout.

        Keywords not reached before the timeout leave no record.
        """
        self._ensure_initialized()
        if isinstance(request, dict):
            request = BatchRequest.from_dict(request)
        if not request.location:
            request.location = self._rank_cfg.get("default_location")
        if timeout is None:
            timeout = self._rank_cfg.get("batch_timeout_seconds")

        try:
            return await asyncio.wait_for(self.get_runner().run(request), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Batch for %r abandoned after %ss", request.domain, timeout)
            raise RankTimeoutError(
                f"Batch did not finish within {timeout} seconds",
                suggestion="Split the batch into fewer keywords or raise the timeout.",
            ) from exc

    def record_manual(
        self,
        domain: str,
        keyword: str,
        rank: Optional[int],
        checked_at: Optional[datetime] = None,
        location: Optional[str] = None,
        client_id: Optional[str] = None,
        keyword_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Store a manually entered or imported rank (``rank=None`` = not ranking)."""
        self._ensure_initialized()
        if rank is not None and not 1 <= rank <= 100:
            raise ValueError(f"Rank must be between 1 and 100, got {rank}")
        resolved = resolve_location(location or self._rank_cfg.get("default_location"))
        observation = RankObservation(
            domain=normalize_domain(domain),
            keyword=keyword,
            location=resolved.name,
            location_code=resolved.code,
            rank=rank,
            checked_at=checked_at or utcnow(),
            source=SOURCE_MANUAL,
            client_id=client_id,
            keyword_id=keyword_id,
            cost=0.0,
        )
        return self.get_store().record(observation).to_dict()

    def monthly_report(
        self,
        domain: Optional[str] = None,
        client_id: Optional[str] = None,
        months: int = 6,
    ) -> dict[str, Any]:
        self._ensure_initialized()
        return self.get_aggregator().monthly_report(domain=domain, client_id=client_id, months=months)

    def weekly_report(
        self,
        domain: Optional[str] = None,
        client_id: Optional[str] = None,
        weeks: int = 4,
    ) -> dict[str, Any]:
        self._ensure_initialized()
        return self.get_aggregator().weekly_report(domain=domain, client_id=client_id, weeks=weeks)

    def dedupe(self, domain: Optional[str] = None) -> int:
        self._ensure_initialized()
        return self.get_store().dedupe_daily(domain)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_provider_info(self) -> dict[str, Any]:
        """Describe the active SERP provider without exposing secrets."""
        name = self.provider_name
        if name == PROVIDER_BULK:
            user = os.getenv("OXYLABS_USER", "")
        else:
            user = os.getenv("DATAFORSEO_LOGIN", "")
        try:
            provider = self.get_provider()
        except ValueError as exc:
            return {"name": name, "configured": False, "error": str(exc)}
        info = provider.describe()
        info.update({
            "name": name,
            "mode": self.get_checker().mode_for(),
            "account": _mask(user),
        })
        return info

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Return health status of all major components."""
        self._ensure_initialized()
        status: dict[str, dict[str, Any]] = {}

        try:
            count = self.get_store().count()
            status["database"] = {"status": "ok", "details": f"{count} observations"}
        except Exception as exc:
            status["database"] = {"status": "error", "details": str(exc)}

        info = self.get_provider_info()
        status["provider"] = {
            "status": "ok" if info.get("configured") else "warning",
            "details": (
                f"{info['name']} ({info.get('mode', 'n/a')})"
                + ("" if info.get("configured") else ", credentials missing")
            ),
        }

        llm_configured = bool(getattr(self._get_llm_client(), "is_configured", False))
        status["llm"] = {
            "status": "ok" if llm_configured else "warning",
            "details": "OpenAI" if llm_configured else "not configured (difficulty skipped)",
        }

        if self._scheduler is not None:
            jobs = self._scheduler.list_jobs()
            status["scheduler"] = {
                "status": "ok",
                "details": f"{'running' if self._scheduler.is_running else 'stopped'}, {len(jobs)} jobs",
            }

        status["config"] = {
            "status": "ok" if self.config else "warning",
            "details": f"{len(self.config)} sections loaded" if self.config else "no config",
        }
        return status

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Call initialize() before using the application.")
