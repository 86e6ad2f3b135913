"""Settings for citecrawl.

Provides one configuration object for the crawler, extractor, chunker,
embedding adapter, search engine and answer generator. Values come from
environment variables and may be overlaid with a source YAML file.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "CITECRAWL_"

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]


def _env(name: str, default: str) -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, str(default)).lower() not in ("false", "0", "no")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class CrawlerSettings(BaseModel):
    """Frontier, politeness and retry configuration."""
    seed_url: str = Field(default="https://www.americanexpress.com/en-us/colleagues/benefits",
                          description="Default crawl seed")
    max_pages: int = Field(default=50, ge=1, description="Page budget per crawl session")
    allowed_paths: List[str] = Field(default_factory=lambda: ["/benefits"],
                                     description="Path substrings a link must contain to be followed")
    min_delay: float = Field(default=2.0, ge=0, description="Politeness delay lower bound (seconds)")
    max_delay: float = Field(default=5.0, ge=0, description="Politeness delay upper bound (seconds)")
    max_attempts: int = Field(default=3, ge=1, description="Fetch+extract attempts per page")
    backoff_base: float = Field(default=1.0, ge=0, description="Backoff base (seconds), doubled per attempt")
    navigation_timeout: float = Field(default=60.0, gt=0, description="Navigation timeout (seconds)")
    render_wait: float = Field(default=2.0, ge=0, description="Extra wait for client-side rendering (seconds)")
    headless: bool = True
    user_agents: List[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    screenshot_dir: Optional[str] = Field(default=None, description="Where failure screenshots are written")
    max_link_text: int = 200


class ExtractionSettings(BaseModel):
    """Content extraction through the text-understanding model."""
    model: str = "gpt-4o-mini"
    topic: str = "employee benefits"
    focus: str = "medical, dental, vision, retirement, insurance, and wellness benefits"
    max_html_chars: int = 20000
    min_content_length: int = 100
    temperature: float = 0.1
    max_tokens: int = 2000
    default_title: str = "Benefits Page"


class ChunkingSettings(BaseModel):
    """Word-window chunking configuration."""
    max_words: int = Field(default=250, gt=0)
    overlap_words: int = Field(default=75, ge=0)
    min_words: int = Field(default=20, ge=1)
    category_prefix: str = "/benefits/"
    default_category: str = "general"
    tokens_per_word: float = 0.75


class EmbeddingSettings(BaseModel):
    """Embedding service configuration."""
    model: str = "text-embedding-3-large"
    dimensions: int = 1536
    batch_size: int = Field(default=50, ge=1)
    batch_delay: float = Field(default=1.0, ge=0)


class SearchSettings(BaseModel):
    """Vector search configuration."""
    top_k: int = Field(default=5, ge=1)
    fallback_sample_size: int = Field(default=5, ge=0)


class AnswerSettings(BaseModel):
    """Answer synthesis configuration."""
    model: str = "gpt-4o"
    assistant_name: str = "Benefits Chat Assistant"
    confidence_floor: float = 0.2
    temperature: float = 0.3
    max_tokens: int = 500


class Settings(BaseModel):
    """Top level configuration."""
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    answer: AnswerSettings = Field(default_factory=AnswerSettings)

    sqlite_path: str = Field(default="citecrawl.db", description="SQLite database path")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create configuration from environment variables."""
        crawler = CrawlerSettings(
            seed_url=_env('SEED_URL', CrawlerSettings().seed_url),
            max_pages=int(_env('MAX_PAGES', '50')),
            allowed_paths=_env_list('ALLOWED_PATHS', ["/benefits"]),
            min_delay=float(_env('RATE_LIMIT_MIN', '2.0')),
            max_delay=float(_env('RATE_LIMIT_MAX', '5.0')),
            max_attempts=int(_env('SCRAPER_MAX_RETRIES', '3')),
            backoff_base=float(_env('BACKOFF_BASE', '1.0')),
            navigation_timeout=float(_env('SCRAPER_TIMEOUT', '60')),
            headless=_env_bool('HEADLESS', True),
            screenshot_dir=os.getenv(ENV_PREFIX + 'SCREENSHOT_DIR'),
        )
        embedding = EmbeddingSettings(
            model=_env('EMBEDDING_MODEL', 'text-embedding-3-large'),
            dimensions=int(_env('EMBEDDING_DIMENSIONS', '1536')),
            batch_size=int(_env('EMBEDDING_BATCH_SIZE', '50')),
        )
        return cls(
            crawler=crawler,
            embedding=embedding,
            extraction=ExtractionSettings(model=_env('EXTRACTION_MODEL', 'gpt-4o-mini')),
            answer=AnswerSettings(
                model=_env('ANSWER_MODEL', 'gpt-4o'),
                confidence_floor=float(_env('CONFIDENCE_FLOOR', '0.2')),
            ),
            sqlite_path=_env('SQLITE_PATH', 'citecrawl.db'),
            openai_api_key=os.getenv('OPENAI_API_KEY'),
            log_level=_env('LOG_LEVEL', 'INFO'),
            log_json=_env_bool('LOG_JSON', False),
        )

    def merged(self, overrides: Dict[str, Any]) -> 'Settings':
        """Return a copy with nested section overrides applied."""
        data = self.model_dump()
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key].update(value)
            else:
                data[key] = value
        return Settings.model_validate(data)


def load_source_file(path: Path) -> Dict[str, Any]:
    """Load a source YAML file into a settings override mapping."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Source file {path} must contain a mapping")

    return data


def load_settings(source_path: Optional[str] = None) -> Settings:
    """Load settings from the environment, overlaid with a source file.

    Args:
        source_path: Optional YAML file with section overrides
            (``crawler``, ``extraction``, ``chunking``, ...)

    Returns:
        Validated settings
    """
    settings = Settings.from_env()

    if source_path:
        overrides = load_source_file(Path(source_path))
        settings = settings.merged(overrides)
        logger.info(f"Loaded source configuration from {source_path}")

    return settings
