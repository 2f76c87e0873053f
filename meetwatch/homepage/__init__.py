from meetwatch.homepage.recovery import HomepageRecoveryController, RecoveryDecision
from meetwatch.homepage.watchdog import (
    Evaluation,
    HomepageReloadWatchdog,
    ReloadAction,
    ReloadReason,
    WatchdogConfig,
    WatchdogState,
    create_watchdog,
)

__all__ = [
    "Evaluation",
    "HomepageRecoveryController",
    "HomepageReloadWatchdog",
    "RecoveryDecision",
    "ReloadAction",
    "ReloadReason",
    "WatchdogConfig",
    "WatchdogState",
    "create_watchdog",
]
