# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Keep local paths and per-machine switches in .env (gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "KEPH_APP_NAME": "Name used in startup logs (default: keph-scheduler).",
    "KEPH_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "KEPH_DATA_DIR": "Local data directory (default: .local/keph).",
    "KEPH_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    "KEPH_LOG_DIR": "Directory for keph.log (default: <data_dir>).",
    # Scheduling policy
    "KEPH_DEFAULT_ACCOUNT_ID": "Account used when a helper is called without account_id (default: default).",
    "KEPH_ENFORCE_MAX_OCCURRENCES": (
        "Stop a series once it has max_occurrences members (true/false, default: false)."
    ),
}
