# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "HABIT_APP_NAME": "App display name (default: habit-tracker).",
    "HABIT_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Connectors
    "HABIT_CONSOLE_ENABLED": "Run the console REPL (true/false, default: true).",
    # Local data
    "HABIT_DATA_DIR": "Base directory for local data and logs (default: .local/habit_tracker).",
    "HABIT_TASKS_DB_PATH": "SQLite database path (default: <data_dir>/tasks.sqlite3).",
    # Engine policy
    "HABIT_STRICT_FREQUENCY": "Reject unknown frequencies (true) or fall back to DAILY (false).",
    "HABIT_DEFAULT_TARGET": "Count added by /done on YES_NO tasks when none is given (default: 1).",
    "HABIT_LOCK_TIMEOUT_SECONDS": "How long a writer waits for the database lock (default: 30).",
    # Display
    "HABIT_DATE_FORMAT": "Console date display: iso (YYYY-MM-DD) or dmy (DD-MM-YYYY).",
}
