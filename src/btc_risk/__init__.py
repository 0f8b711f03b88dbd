"""Bitcoin risk score ETL."""

import os


def get_etl_version() -> str:
    """Get version with fallback for dev mode."""
    if version := os.environ.get("ETL_VERSION"):
        return version
    try:
        from importlib.metadata import version as pkg_version

        return pkg_version("btc-risk-etl")
    except Exception:
        return "dev"


ETL_VERSION = get_etl_version()
# Bump when factor math or output schema changes materially
# v1.0: Initial composite with eight factors
# v1.1: Contiguous bands, tagged ETF parse results, explicit factor cache
MODEL_VERSION = os.environ.get("MODEL_VERSION", "v1.1")
