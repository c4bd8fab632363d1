# engine/factory.py
from typing import Optional

from loguru import logger
from mistralai import Mistral

from engine.cache import TTLCache
from engine.config import Settings, get_settings
from engine.controller import SessionManager
from engine.events import EventPublisher
from engine.issuer import GenerationGateway, QuestionGenerator, QuestionIssuer
from engine.learning.scoring import ScoringConfig
from engine.storage.sqlite_store import SqliteStore
from generators.question_writer import MistralQuestionWriter


def build_generator(settings: Settings) -> MistralQuestionWriter:
    if not settings.mistral_api_key:
        logger.warning("MISTRAL_API_KEY is not set; questions will come from the local fallback")
    client = Mistral(api_key=settings.mistral_api_key)
    return MistralQuestionWriter(
        client,
        model=settings.mistral_model,
        temperature=settings.generator_temperature,
        timeout_ms=settings.generator_timeout_ms,
        text_limit=settings.source_text_limit,
    )


def build_session_manager(
    settings: Optional[Settings] = None,
    *,
    generator: Optional[QuestionGenerator] = None,
    publisher: Optional[EventPublisher] = None,
    store: Optional[SqliteStore] = None,
) -> SessionManager:
    settings = settings or get_settings()
    store = store or SqliteStore(settings.database_path)
    cache = TTLCache(
        ttl_seconds=settings.generation_cache_ttl_seconds,
        max_entries=settings.generation_cache_max_entries,
    )
    gateway = GenerationGateway(
        generator or build_generator(settings),
        cache,
        max_retries=settings.generator_max_retries,
        base_delay=settings.generator_base_delay,
        max_delay=settings.generator_max_delay,
    )
    return SessionManager(
        store,
        QuestionIssuer(store, gateway),
        publisher,
        default_max_questions=settings.default_max_questions,
        max_questions_limit=settings.max_questions_limit,
        review_threshold=settings.review_streak_threshold,
        max_page_size=settings.list_page_size_limit,
    )


def build_scoring_config(settings: Optional[Settings] = None, *, with_multipliers: bool = False) -> ScoringConfig:
    return ScoringConfig.from_settings(settings or get_settings(), with_multipliers=with_multipliers)
