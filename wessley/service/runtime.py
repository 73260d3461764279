from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from wessley.config import get_settings, reset_settings_cache
from wessley.logging import get_logger
from wessley.service.auth import AuthService
from wessley.service.billing import BillingService
from wessley.service.email import EmailService
from wessley.service.llm import LLMService
from wessley.service.netlistify import NetlistifyClient
from wessley.service.rate_limit import build_limiters
from wessley.service.scraper_status import ScraperStatusStore
from wessley.service.search import SearchService
from wessley.service.services_client import ServicesClient
from wessley.service.waitlist import WaitlistService
from wessley.service.webhooks import StripeWebhookHandler
from wessley.storage.memory import MemoryStore
from wessley.storage.postgres import PostgresStore
from wessley.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in ``url`` with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        settings = self.settings
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
            app_env=settings.app_env.value,
        )

        store_type = "memory" if settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if settings.use_memory_store
                else PostgresStore(settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache = None
        redis_error: Exception | None = None
        if settings.redis_url:
            try:
                # Sync client in test mode avoids binding to a closed event loop
                if settings.test_mode:
                    cache = SyncRedisCache(settings.redis_url)
                else:
                    cache = RedisCache(settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if not settings.test_mode and not settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for rate limits and webhook idempotency; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; rate limiters are "
                    "unconfigured and webhook idempotency is in-memory only."
                ),
                mode=fallback_mode,
            )

        self.limiters = build_limiters(self.cache)

        self.services = ServicesClient(settings)
        self.netlistify = NetlistifyClient(settings.netlistify_url)
        self.llm = LLMService(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        self.billing = BillingService(secret_key=settings.stripe_secret_key, app_url=settings.app_url)
        self.email = EmailService(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            base_url=settings.app_url,
        )
        self.webhooks = StripeWebhookHandler(
            self.store,
            cache=self.cache,
            email=self.email,
            billing=self.billing,
            app_url=settings.app_url,
        )
        self.auth = AuthService(
            jwt_secret=settings.supabase_jwt_secret,
            audience=settings.jwt_audience,
            supabase_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
        )
        self.search = SearchService(self.store, self.services.semantic)
        self.waitlist = WaitlistService(
            api_key=settings.beehiiv_api_key,
            publication_id=settings.beehiiv_publication_id,
        )
        self.scraper_status = ScraperStatusStore()
        logger.info(
            "runtime_init_completed",
            redis=bool(self.cache),
            llm_configured=self.llm.is_configured,
            billing_configured=self.billing.is_configured,
            email_configured=self.email.is_configured,
        )

    async def close(self) -> None:
        """Release the Redis client and the Postgres pool on shutdown."""
        if self.cache is not None:
            await self.cache.close()
        pool = getattr(self.store, "pool", None)
        if pool is not None:
            await asyncio.to_thread(pool.close)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def _close_cache(cache) -> None:
    if isinstance(cache, SyncRedisCache):
        cache.client.close()
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(cache.close())
    else:
        loop.create_task(cache.close())


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            try:
                _close_cache(runtime.cache)
            except Exception as exc:
                logger.warning("runtime_cache_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
