"""FRED observations fetcher shared by the liquidity and macro factors."""

from datetime import date

import pandas as pd

from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext

FRED_OBSERVATIONS_URL = "https://api.stlouisfed.org/fred/series/observations"


async def fetch_fred_series(
    ctx: FactorContext,
    series_id: str,
    start: date,
    frequency: str | None = None,
) -> pd.Series:
    """
    Observations for one FRED series as a float Series indexed by date.

    Missing observations (".") are dropped. Caller must have checked that an
    API key is configured.

    Raises:
        UpstreamError: On transport errors or an unexpected payload
    """
    params = {
        "series_id": series_id,
        "api_key": ctx.settings.fred_api_key,
        "file_type": "json",
        "observation_start": start.isoformat(),
    }
    if frequency:
        params["frequency"] = frequency

    payload = await ctx.http.get_json(f"fred:{series_id}", FRED_OBSERVATIONS_URL, params=params)
    observations = payload.get("observations") if isinstance(payload, dict) else None
    if not isinstance(observations, list):
        raise UpstreamError(FRED_OBSERVATIONS_URL, f"FRED {series_id}: no observations in payload")

    df = pd.DataFrame(observations, columns=["date", "value"])
    values = pd.to_numeric(df["value"], errors="coerce")
    series = pd.Series(values.to_numpy(), index=pd.to_datetime(df["date"], errors="coerce"), dtype=float)
    series = series[series.index.notna()].dropna().sort_index()
    return series[~series.index.duplicated(keep="last")]
