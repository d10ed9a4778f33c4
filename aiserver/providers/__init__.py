"""
External generation providers, each guarded by its own circuit breaker.
"""

from aiserver.providers.base import BaseProvider
from aiserver.providers.bfl import BFLProvider, FinetuneRequest
from aiserver.providers.elevenlabs import ElevenLabsProvider
from aiserver.providers.files import FileDownloader
from aiserver.providers.huggingface import HuggingFaceProvider
from aiserver.providers.replicate import ReplicateProvider
from aiserver.providers.supabase import SupabaseProvider
from aiserver.providers.synclabs import SyncLabsProvider
from aiserver.services.client import ServiceClient


def build_providers(client: ServiceClient | None = None) -> list[BaseProvider]:
    """Instantiate every provider on a shared client."""
    return [
        SupabaseProvider(client=client),
        ReplicateProvider(client=client),
        ElevenLabsProvider(client=client),
        SyncLabsProvider(client=client),
        HuggingFaceProvider(client=client),
        BFLProvider(client=client),
        FileDownloader(client=client),
    ]


__all__ = [
    "BaseProvider",
    "BFLProvider",
    "ElevenLabsProvider",
    "FileDownloader",
    "FinetuneRequest",
    "HuggingFaceProvider",
    "ReplicateProvider",
    "SupabaseProvider",
    "SyncLabsProvider",
    "build_providers",
]
