# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a
local .env file) by src/cadence/config.py. This file lists every variable so
the repo is self-documenting.
"""

ENV_VARS = {
    # App / logging
    "CADENCE_APP_NAME": "App display name (default: cadence).",
    "CADENCE_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "CADENCE_DATA_DIR": "Local data directory, also holds cadence.log (default: .local/cadence).",
    "CADENCE_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    "CADENCE_SERIES_DB_PATH": "SeriesStore SQLite path (default: <data_dir>/series.sqlite3).",
    # Scheduler
    "CADENCE_SCHEDULER_ENABLED": "Run the materialization loop in the background (true/false).",
    "CADENCE_SCHEDULER_INTERVAL_SECONDS": "Seconds between scheduler ticks (default: 60).",
    "CADENCE_SCHEDULER_WORKERS": "Series evaluated in parallel per tick (default: 4).",
    "CADENCE_CAS_MAX_ATTEMPTS": "Compare-and-swap retries before a series is deferred (default: 3).",
    "CADENCE_USER_CAS_MAX_ATTEMPTS": "CAS retries for stop, skip and pattern edits before a conflict is reported (default: 10).",
    "CADENCE_MAX_CATCHUP_PER_TICK": "Max overdue occurrences materialized per series per tick (default: 32).",
    "CADENCE_CLAIM_TIMEOUT_SECONDS": "Age after which an in-flight claim is re-driven (default: 300).",
    # Calculator / display
    "CADENCE_MAX_CALCULATION_STEPS": "Iteration cap of the occurrence calculator (default: 10000).",
    "CADENCE_PREVIEW_DEFAULT_COUNT": "Dates shown by /preview when n= is omitted (default: 10).",
}
