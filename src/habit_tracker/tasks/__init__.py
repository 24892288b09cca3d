"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Category, ProgressEvent, enums)
- periods.py: period calculator ([start, end) for DAILY/WEEKLY/MONTHLY)
- progress.py: progress accumulator (period sums, completion check)
- task_store.py: SQLite-backed storage + transactional ledger session
- lifecycle.py: task lifecycle manager (completion, successor spawning, archiving)
- task_api.py: small high-level helpers used by the rest of the app
"""
