"""Runtime settings and static scoring tables.

Settings come from environment variables. Factor specs and risk bands are
module constants checked once at import; a bad table fails the process
before any network call.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from btc_risk.models import Band, Pillar
from btc_risk.utils.validators import validate_bands, validate_weights

DEFAULT_ETF_FLOWS_URL = "https://farside.co.uk/bitcoin-etf-flow-all-data/"
DEFAULT_USER_AGENT = "btc-risk-etl/1.1 (+https://github.com/)"

# Composite used when no factor is fresh
FALLBACK_SCORE = 50


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_str(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """Immutable run settings. Build with Settings.from_env() in production."""

    data_dir: Path = Path("public/data")
    cache_dir: Path = Path(".cache/factors")
    fred_api_key: str | None = None
    coingecko_api_key: str | None = None
    etf_flows_url: str = DEFAULT_ETF_FLOWS_URL
    etf_flows_alt_url: str | None = None
    max_workers: int = 4
    http_timeout: float = 20.0
    http_max_retries: int = 0
    price_history_min_rows: int = 500
    price_history_target_days: int = 730
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir))
        object.__setattr__(self, "cache_dir", Path(self.cache_dir))
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.http_timeout <= 0:
            raise ValueError(f"http_timeout must be > 0, got {self.http_timeout}")
        if self.http_max_retries < 0:
            raise ValueError(f"http_max_retries must be >= 0, got {self.http_max_retries}")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.environ.get("DATA_DIR", "public/data")),
            cache_dir=Path(os.environ.get("CACHE_DIR", ".cache/factors")),
            fred_api_key=_env_str("FRED_API_KEY"),
            coingecko_api_key=_env_str("COINGECKO_API_KEY"),
            etf_flows_url=_env_str("ETF_FLOWS_URL") or DEFAULT_ETF_FLOWS_URL,
            etf_flows_alt_url=_env_str("ETF_FLOWS_ALT_URL"),
            max_workers=_env_int("ETL_MAX_WORKERS", 4),
            http_timeout=_env_float("ETL_HTTP_TIMEOUT", 20.0),
            http_max_retries=_env_int("ETL_HTTP_MAX_RETRIES", 0),
            price_history_min_rows=_env_int("PRICE_HISTORY_MIN_ROWS", 500),
            price_history_target_days=_env_int("PRICE_HISTORY_TARGET_DAYS", 730),
            user_agent=os.environ.get("ETL_USER_AGENT", DEFAULT_USER_AGENT),
        )

    # Artifact paths
    @property
    def latest_path(self) -> Path:
        return self.data_dir / "latest.json"

    @property
    def status_path(self) -> Path:
        return self.data_dir / "status.json"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "history.csv"

    @property
    def factor_history_path(self) -> Path:
        return self.data_dir / "factor_history.csv"

    @property
    def factor_deltas_path(self) -> Path:
        return self.data_dir / "factor_deltas.json"

    @property
    def price_history_path(self) -> Path:
        return self.data_dir / "btc_price_history.csv"

    @property
    def etf_flows_21d_path(self) -> Path:
        return self.data_dir / "signals" / "etf_flows_21d.csv"

    @property
    def alerts_dir(self) -> Path:
        return self.data_dir / "alerts"


@dataclass(frozen=True)
class FactorSpec:
    """
    Static description of a factor.

    stale_after_days suppresses the score; ttl_hours is the freshness budget
    used for staleness alerts and is always the tighter of the two.
    """

    key: str
    label: str
    pillar: Pillar
    weight: float
    stale_after_days: int
    ttl_hours: int
    counts_toward: Pillar | None = None
    sources: tuple[str, ...] = field(default_factory=tuple)


FACTOR_SPECS: tuple[FactorSpec, ...] = (
    FactorSpec("trend_valuation", "Trend & Valuation", Pillar.MOMENTUM, 25, 3, 24,
               sources=("Coinbase",)),
    FactorSpec("net_liquidity", "Net Liquidity (FRED)", Pillar.LIQUIDITY, 10, 14, 240,
               sources=("FRED",)),
    FactorSpec("stablecoins", "Stablecoins", Pillar.LIQUIDITY, 15, 3, 24,
               sources=("CoinGecko",)),
    FactorSpec("etf_flows", "ETF Flows", Pillar.LIQUIDITY, 10, 5, 72,
               sources=("Farside",)),
    FactorSpec("term_leverage", "Term Structure & Leverage", Pillar.LEVERAGE, 20, 3, 24,
               sources=("BitMEX",)),
    FactorSpec("onchain", "On-chain Activity", Pillar.SOCIAL, 10, 4, 72,
               counts_toward=Pillar.MOMENTUM, sources=("blockchain.info",)),
    FactorSpec("social_interest", "Social Interest", Pillar.SOCIAL, 5, 3, 48,
               sources=("Alternative.me",)),
    FactorSpec("macro_overlay", "Macro Overlay", Pillar.MACRO, 5, 7, 96,
               sources=("FRED",)),
)

FACTOR_SPECS_BY_KEY: dict[str, FactorSpec] = {s.key: s for s in FACTOR_SPECS}

RISK_BANDS: tuple[Band, ...] = (
    Band("aggressive_buy", "Aggressive Buying", 0, 15, "green",
         "Historically depressed/washed-out conditions. Accumulate aggressively."),
    Band("dca_buy", "Regular DCA Buying", 15, 35, "green",
         "Favorable long-term conditions; steady DCA recommended."),
    Band("moderate_buy", "Moderate Buying", 35, 50, "yellow",
         "Moderate buying opportunities. Be selective with entries."),
    Band("hold_wait", "Hold & Wait", 50, 65, "orange",
         "Hold core; buy dips selectively."),
    Band("reduce_risk", "Reduce Risk", 65, 80, "red",
         "Trim risk; tighten risk controls."),
    Band("high_risk", "High Risk", 80, 100, "red",
         "Crowded tape; prone to disorderly moves. Consider profit-taking."),
)


def band_for_score(score: float, bands: tuple[Band, ...] = RISK_BANDS) -> Band:
    """
    Band containing score; the top band is closed at its upper bound.

    Raises:
        ValueError: If score is outside [0, 100]
    """
    for band in bands:
        if band.lower <= score < band.upper:
            return band
    if score == bands[-1].upper:
        return bands[-1]
    raise ValueError(f"Score {score} outside band range [{bands[0].lower}, {bands[-1].upper}]")


def band_index(band_key: str, bands: tuple[Band, ...] = RISK_BANDS) -> int | None:
    for i, band in enumerate(bands):
        if band.key == band_key:
            return i
    return None


validate_bands(RISK_BANDS)
validate_weights({s.key: s.weight for s in FACTOR_SPECS})
