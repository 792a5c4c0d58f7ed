"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class HttpSettings(BaseSettings):
    """Shared HTTP client behaviour for every upstream adapter."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout_seconds: float = 8.0
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    verify_ssl: bool = True


class OfficialRateSettings(BaseSettings):
    """Central bank (BCV) scrape target."""

    model_config = SettingsConfigDict(env_prefix="BCV_")

    url: str = "https://www.bcv.org.ve"
    # The BCV site intermittently serves an incomplete certificate chain
    verify_ssl: bool = False


class P2PSettings(BaseSettings):
    """P2P marketplace query parameters and probe ranges.

    All fields configurable via P2P_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="P2P_")

    fiat: str = "VES"
    asset: str = "USDT"
    top_n: int = 5  # offers per side per query
    dashboard_top_n: int = 3
    dashboard_probe_usd: Decimal = Decimal("50")
    fallback_reference_rate: Decimal = Decimal("40")  # used when no live reference
    binance_url: str = "https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"
    bybit_url: str = "https://api2.bybit.com/fiat/otc/item/online"
    # (id, label, amount_usd)
    probes: list[tuple[str, str, Decimal]] = [
        ("low", "$1 - $20", Decimal("10")),
        ("mid", "$20 - $100", Decimal("60")),
        ("high", "$100 - $200", Decimal("150")),
    ]


class MarketSettings(BaseSettings):
    """Spot price and top-coin providers."""

    model_config = SettingsConfigDict(env_prefix="MARKET_")

    spot_symbol: str = "BTC/USDT"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    top_coins_ttl_seconds: float = 300.0  # 5 minutes


class StorageSettings(BaseSettings):
    """History store location."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/ratewatch.db"


class SchedulerSettings(BaseSettings):
    """Background job cadence.

    Snapshot and news scrape share the hourly cadence; the narrative reports
    run once a day at their own wall-clock hour (local time).
    """

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = True
    snapshot_interval_seconds: int = 3600
    daily_brief_hour: int = 8
    local_analysis_hour: int = 9
    run_on_startup: bool = True


class NewsSettings(BaseSettings):
    """RSS corpus feeding the narrative job."""

    model_config = SettingsConfigDict(env_prefix="NEWS_")

    feeds: list[str] = [
        "https://cointelegraph.com/rss",
        "https://www.coindesk.com/arc/outboundfeeds/rss/",
        "https://decrypt.co/feed",
        "https://cryptopotato.com/feed/",
        "https://bitcoinmagazine.com/.rss/full/",
        "https://www.bancaynegocios.com/feed/",
        "https://finanzasdigital.com/feed/",
    ]
    keywords: list[str] = [
        "bitcoin",
        "btc",
        "crypto",
        "market",
        "price",
        "venezuela",
        "bcv",
        "dolar",
        "petroleo",
        "sanciones",
    ]
    lookback_hours: int = 24
    max_headlines: int = 10
    local_source_hint: str = "banca"


class AISettings(BaseSettings):
    """LLM providers for the narrative reports, tried in order."""

    model_config = SettingsConfigDict(env_prefix="AI_")

    gemini_api_key: SecretStr = SecretStr("")
    gemini_model: str = "gemini-flash-latest"
    huggingface_api_key: SecretStr = SecretStr("")
    huggingface_model: str = "mistralai/Mistral-7B-Instruct-v0.3"
    timeout_seconds: float = 30.0


class DashboardSettings(BaseSettings):
    """Dashboard server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "0.0.0.0"
    port: int = 3000


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production
    http: HttpSettings = HttpSettings()
    bcv: OfficialRateSettings = OfficialRateSettings()
    p2p: P2PSettings = P2PSettings()
    market: MarketSettings = MarketSettings()
    storage: StorageSettings = StorageSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    news: NewsSettings = NewsSettings()
    ai: AISettings = AISettings()
    dashboard: DashboardSettings = DashboardSettings()
