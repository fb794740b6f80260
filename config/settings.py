from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


def split_list(value: str) -> tuple[str, ...]:
    """Parse a comma-separated settings value."""
    return tuple(v.strip() for v in value.split(",") if v.strip())


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./nichescore.db"

    # Server
    DASHBOARD_PORT: int = 3002
    LOG_LEVEL: str = "INFO"

    # Pipeline schedule (crontab syntax: every 6 hours)
    PIPELINE_ENABLED: bool = False
    PIPELINE_SCHEDULE: str = "0 */6 * * *"

    # Classification oracle
    ORACLE_MODEL: str = "gpt-4o-mini"
    ORACLE_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("ORACLE_API_KEY", "OPENAI_API_KEY"),
    )
    ORACLE_MAX_TOKENS: int = 8192
    ORACLE_TIMEOUT_SECONDS: float = 120.0
    CLASSIFIER_BATCH_SIZE: int = 50
    EXCERPT_LENGTH: int = 300

    # Frustration keywords searched across platforms
    KEYWORDS: str = (
        "I wish there was,why is there no,why can't I,so annoying that,"
        "there should be an app,hate when,frustrated that,somebody should make,"
        "wish someone would build,can't believe there's no"
    )

    # Reddit
    REDDIT_SUBREDDITS: str = (
        "mildlyinfuriating,DoesAnybodyElse,AppIdeas,SomebodyMakeThis,"
        "RealEstate,PropertyManagement,Landlord,FirstTimeHomeBuyer,"
        "gardening,homestead,UrbanGardening,composting,"
        "LifeProTips,PersonalFinance,HomeImprovement"
    )
    REDDIT_IDEA_SUBREDDITS: str = "AppIdeas,SomebodyMakeThis"
    REDDIT_GENERAL_SUBREDDITS: str = "mildlyinfuriating,DoesAnybodyElse,LifeProTips"
    REDDIT_LIMIT: int = 15

    # Hacker News (Algolia search API)
    HACKERNEWS_BASE_URL: str = "https://hn.algolia.com/api/v1"
    HACKERNEWS_RESULTS_PER_KEYWORD: int = 20

    # Lemmy
    LEMMY_INSTANCE: str = "https://lemmy.world"
    LEMMY_COMMUNITIES: str = "gardening,homeimprovement,personalfinance,technology"
    LEMMY_LIMIT: int = 20

    # Stack Exchange
    STACKEXCHANGE_BASE_URL: str = "https://api.stackexchange.com/2.3"
    STACKEXCHANGE_SITES: str = "gardening,diy,money,realestate"
    STACKEXCHANGE_API_KEY: str = ""
    STACKEXCHANGE_PAGE_SIZE: int = 20

    # App Store (iTunes customer-reviews feed, iOS)
    APPSTORE_IOS_APP_IDS: str = "310738695,288487321,1497427849"
    APPSTORE_COUNTRY: str = "us"
    APPSTORE_MAX_RATING: int = 2

    # Scraping behaviour
    SCRAPE_REQUEST_DELAY: float = 2.0
    SCRAPE_TIMEOUT_SECONDS: float = 10.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


# Source quality weights for NicheScore. Reddit is keyed by subreddit tier.
DEFAULT_SOURCE_WEIGHTS: Mapping[str, int] = MappingProxyType(
    {
        "niche_subreddit": 9,
        "appstore_ios": 8,
        "appstore_google": 8,
        "idea_subreddit": 8,
        "general_subreddit": 5,
        "x": 4,
        "tiktok": 3,
    }
)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable knobs handed to each pipeline component at construction."""

    batch_size: int = 50
    excerpt_length: int = 300
    oracle_model: str = "gpt-4o-mini"
    oracle_max_tokens: int = 8192
    oracle_timeout_seconds: float = 120.0
    keywords: tuple[str, ...] = ()
    source_weights: Mapping[str, int] = field(
        default_factory=lambda: DEFAULT_SOURCE_WEIGHTS
    )
    idea_subreddits: frozenset[str] = frozenset()
    general_subreddits: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.oracle_timeout_seconds <= 0:
            raise ValueError("oracle_timeout_seconds must be positive")
        # Freeze caller-supplied dicts so the config stays read-only.
        if not isinstance(self.source_weights, MappingProxyType):
            object.__setattr__(
                self, "source_weights", MappingProxyType(dict(self.source_weights))
            )

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> PipelineConfig:
        s = s or settings
        return cls(
            batch_size=s.CLASSIFIER_BATCH_SIZE,
            excerpt_length=s.EXCERPT_LENGTH,
            oracle_model=s.ORACLE_MODEL,
            oracle_max_tokens=s.ORACLE_MAX_TOKENS,
            oracle_timeout_seconds=s.ORACLE_TIMEOUT_SECONDS,
            keywords=split_list(s.KEYWORDS),
            idea_subreddits=frozenset(split_list(s.REDDIT_IDEA_SUBREDDITS)),
            general_subreddits=frozenset(split_list(s.REDDIT_GENERAL_SUBREDDITS)),
        )
