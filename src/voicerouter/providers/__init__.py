from typing import Dict, Optional, Type

from voicerouter.adapter import ProviderAdapter
from voicerouter.config import ProviderConfig
from voicerouter.errors import ConfigError
from voicerouter.providers.assemblyai import AssemblyAIAdapter
from voicerouter.providers.azure import AzureSTTAdapter
from voicerouter.providers.deepgram import DeepgramAdapter
from voicerouter.providers.gladia import GladiaAdapter
from voicerouter.providers.openai_whisper import OpenAIWhisperAdapter
from voicerouter.providers.soniox import SonioxAdapter
from voicerouter.providers.speechmatics import SpeechmaticsAdapter

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    "deepgram": DeepgramAdapter,
    "assemblyai": AssemblyAIAdapter,
    "gladia": GladiaAdapter,
    "azure-stt": AzureSTTAdapter,
    "openai-whisper": OpenAIWhisperAdapter,
    "speechmatics": SpeechmaticsAdapter,
    "soniox": SonioxAdapter,
}


def create_adapter(name: str, config: Optional[ProviderConfig] = None, **kwargs) -> ProviderAdapter:
    try:
        adapter_class = ADAPTERS[name]
    except KeyError:
        raise ConfigError(f"Unknown provider '{name}'. Available: {', '.join(ADAPTERS)}")
    return adapter_class(config, **kwargs)


__all__ = [
    "ADAPTERS",
    "AssemblyAIAdapter",
    "AzureSTTAdapter",
    "DeepgramAdapter",
    "GladiaAdapter",
    "OpenAIWhisperAdapter",
    "SonioxAdapter",
    "SpeechmaticsAdapter",
    "create_adapter",
]
