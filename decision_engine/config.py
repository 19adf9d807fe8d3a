"""
Decision Engine - Configuration.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """
    OpenAI-compatible chat endpoint.

    Defaults target DeepSeek.
    """

    api_key: str = ""
    base_url: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-chat"
    temperature: float = 0.3
    spot_max_tokens: int = 800
    futures_max_tokens: int = 1000
    timeout_seconds: float = 60.0

    def max_tokens(self, futures: bool) -> int:
        return self.futures_max_tokens if futures else self.spot_max_tokens

    def __repr__(self) -> str:
        return f"LLMConfig(base_url={self.base_url!r}, model={self.model!r})"

    @classmethod
    def for_testing(cls) -> "LLMConfig":
        return cls(api_key="test-key", timeout_seconds=5.0)

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """
        LLM_API_KEY (fallback DEEPSEEK_API_KEY), LLM_BASE_URL, LLM_MODEL,
        LLM_TIMEOUT_SECONDS.
        """
        load_dotenv()
        api_key: Optional[str] = os.getenv("LLM_API_KEY") or os.getenv("DEEPSEEK_API_KEY")
        if not api_key:
            logger.warning("LLM_API_KEY not set; model calls will fail")
        defaults = cls()
        return cls(
            api_key=api_key or "",
            base_url=os.getenv("LLM_BASE_URL", defaults.base_url),
            model=os.getenv("LLM_MODEL", defaults.model),
            timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", str(defaults.timeout_seconds))),
        )
