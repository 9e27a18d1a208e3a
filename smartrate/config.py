"""
config.py — Central configuration for SmartRate.

Everything tunable lives here: the local model used for extraction and
matching, where the catalog is persisted, and how exports are named.
Most values can be overridden from the environment so the same build
works on an estimator's laptop and on the small office server that
runs the API.

The catalog key is versioned on purpose. When the record shape changed
(scope and source were split into separate fields) we bumped the key
instead of migrating in place, so an old store never gets half-read.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """
    Local instruct model settings via llama-cpp-python.

    Extraction and matching prompts are short, so a 4k context is plenty.
    The catalog summary for matching is the largest input we send and a
    few hundred rate names still fit comfortably.
    """
    model_path: str = os.getenv(
        "LLM_MODEL_PATH",
        "models/mistral-7b-instruct-v0.2.Q4_K_M.gguf",
    )
    n_ctx: int = 4096
    max_tokens: int = 2048
    # 0.0 is greedy in llama.cpp and sometimes loops on long JSON arrays.
    temperature: float = 0.1
    n_threads: int = 0  # 0 = auto-detect
    max_retries: int = 3
    retry_base_delay: float = 2.0
    timeout_seconds: float = float(os.getenv("LLM_TIMEOUT", "120"))


@dataclass
class StorageConfig:
    """Where the catalog lives between sessions."""
    store_path: str = os.getenv("SMARTRATE_STORE", "data/smartrate_store.json")
    catalog_key: str = "smart_rate_store_v3"


@dataclass
class ExportConfig:
    """File naming for downloads and exports."""
    catalog_csv_prefix: str = "SmartRate_Database"
    quotation_csv_prefix: str = "Quotation_Builder"
    backup_prefix: str = "smartrate_backup"
    currency_symbol: str = "₹"


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on settings that would only blow up mid-tender."""
        if self.llm.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.llm.max_retries}")
        if self.llm.timeout_seconds <= 0:
            raise ValueError(
                f"LLM timeout must be positive, got {self.llm.timeout_seconds}"
            )
        if not self.storage.catalog_key:
            raise ValueError("catalog_key cannot be empty")

        if self.llm.temperature > 0.5:
            logger.warning(
                "LLM temperature is %.2f. Extraction output may drift "
                "between runs on the same text.", self.llm.temperature
            )


# Singleton — every module imports this same instance
config = Config()
