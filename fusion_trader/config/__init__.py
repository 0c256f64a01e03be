from .settings import (
    AdvisorySettings,
    FusionSettings,
    LoggingSettings,
    RiskSettings,
    Settings,
    TradingSettings,
    settings,
)

__all__ = [
    "AdvisorySettings",
    "FusionSettings",
    "LoggingSettings",
    "RiskSettings",
    "Settings",
    "TradingSettings",
    "settings",
]
