from functools import lru_cache
from typing import Optional

from fastapi import Depends

from saldin.config import Settings, get_settings
from saldin.services.inbound_service import DedupCache, build_dedup_cache
from saldin.services.llm import LLMProvider, OpenAIProvider
from saldin.services.whatsapp_service import WhatsAppService


def get_whatsapp_service(settings: Settings = Depends(get_settings)) -> WhatsAppService:
    return WhatsAppService(
        settings.meta_access_token,
        settings.meta_phone_number_id,
        graph_url=settings.meta_graph_url,
        api_version=settings.meta_api_version,
        timeout_seconds=settings.meta_timeout_seconds,
    )


def get_llm_provider(settings: Settings = Depends(get_settings)) -> LLMProvider:
    return OpenAIProvider(
        api_key=settings.openai_api_key or "",
        default_model=settings.openai_chat_model,
        transcription_model=settings.openai_transcription_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )


@lru_cache
def _cached_dedup_cache(redis_url: str, ttl_seconds: int, socket_timeout_seconds: float) -> Optional[DedupCache]:
    return build_dedup_cache(redis_url, ttl_seconds, socket_timeout_seconds)


def get_dedup_cache(settings: Settings = Depends(get_settings)) -> Optional[DedupCache]:
    if not settings.redis_url:
        return None
    return _cached_dedup_cache(settings.redis_url, settings.dedup_ttl_seconds, settings.redis_socket_timeout_seconds)
