"""Provider credentials, timeouts and environment loading.

Keys are read from the environment (optionally via a `.env` file) the same
way the Pipecat example bots pick up their service keys.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from loguru import logger

from voicerouter.errors import ConfigError

DEFAULT_HTTP_TIMEOUT = 60.0
DEFAULT_WS_CONNECT_TIMEOUT = 10.0
DEFAULT_WS_CLOSE_TIMEOUT = 5.0
DEFAULT_ACK_TIMEOUT = 5.0
DEFAULT_POLL_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_BUFFER_SECONDS = 2.0

# provider key -> (api key variable, base url variable)
ENV_KEYS: Dict[str, tuple] = {
    "deepgram": ("DEEPGRAM_API_KEY", "DEEPGRAM_BASE_URL"),
    "assemblyai": ("ASSEMBLYAI_API_KEY", "ASSEMBLYAI_BASE_URL"),
    "gladia": ("GLADIA_API_KEY", "GLADIA_BASE_URL"),
    "azure-stt": ("AZURE_STT_API_KEY", "AZURE_STT_BASE_URL"),
    "openai-whisper": ("OPENAI_API_KEY", "OPENAI_BASE_URL"),
    "speechmatics": ("SPEECHMATICS_API_KEY", "SPEECHMATICS_BASE_URL"),
    "soniox": ("SONIOX_API_KEY", "SONIOX_BASE_URL"),
}

# providers whose endpoint depends on a region
REGION_KEYS: Dict[str, str] = {
    "azure-stt": "AZURE_STT_REGION",
    "speechmatics": "SPEECHMATICS_REGION",
    "soniox": "SONIOX_REGION",
}


@dataclass
class Timeouts:
    http: float = DEFAULT_HTTP_TIMEOUT
    connect: float = DEFAULT_WS_CONNECT_TIMEOUT
    close: float = DEFAULT_WS_CLOSE_TIMEOUT
    ack: float = DEFAULT_ACK_TIMEOUT
    poll_attempts: int = DEFAULT_POLL_ATTEMPTS
    poll_interval: float = DEFAULT_POLL_INTERVAL


@dataclass
class ProviderConfig:
    api_key: str = ""
    base_url: Optional[str] = None
    region: Optional[str] = None
    timeout: Optional[float] = None
    headers: Dict[str, str] = field(default_factory=dict)
    # Overrides: connect_timeout, close_timeout, ack_timeout,
    # poll_attempts, poll_interval, buffer_seconds.
    options: Dict[str, Any] = field(default_factory=dict)

    def validate(self, provider: str) -> None:
        if not self.api_key or not self.api_key.strip():
            raise ConfigError(f"API key is required for provider '{provider}'")

    def timeouts(self) -> Timeouts:
        o = self.options
        return Timeouts(
            http=float(self.timeout or DEFAULT_HTTP_TIMEOUT),
            connect=float(o.get("connect_timeout", DEFAULT_WS_CONNECT_TIMEOUT)),
            close=float(o.get("close_timeout", DEFAULT_WS_CLOSE_TIMEOUT)),
            ack=float(o.get("ack_timeout", DEFAULT_ACK_TIMEOUT)),
            poll_attempts=int(o.get("poll_attempts", DEFAULT_POLL_ATTEMPTS)),
            poll_interval=float(o.get("poll_interval", DEFAULT_POLL_INTERVAL)),
        )

    @property
    def buffer_seconds(self) -> float:
        return float(self.options.get("buffer_seconds", DEFAULT_BUFFER_SECONDS))


def provider_config_from_env(provider: str, *, dotenv: bool = True) -> Optional[ProviderConfig]:
    """Build a config for one provider, or None when its key is not set."""
    if provider not in ENV_KEYS:
        raise ConfigError(f"Unknown provider '{provider}'")
    if dotenv:
        load_dotenv(override=False)

    key_var, url_var = ENV_KEYS[provider]
    api_key = os.getenv(key_var)
    if not api_key:
        return None

    region_var = REGION_KEYS.get(provider)
    region = os.getenv(region_var) if region_var else None
    return ProviderConfig(api_key=api_key, base_url=os.getenv(url_var) or None, region=region)


def providers_from_env(*, dotenv: bool = True) -> Dict[str, ProviderConfig]:
    if dotenv:
        load_dotenv(override=False)
    configs = {}
    for name in ENV_KEYS:
        config = provider_config_from_env(name, dotenv=False)
        if config is not None:
            configs[name] = config
    logger.debug(f"[VoiceRouter] Providers found in environment: {list(configs)}")
    return configs


def router_settings_from_env() -> Dict[str, Optional[str]]:
    return {
        "default_provider": os.getenv("VOICEROUTER_DEFAULT_PROVIDER") or None,
        "strategy": os.getenv("VOICEROUTER_STRATEGY") or None,
    }
