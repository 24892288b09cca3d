# src/habit_tracker/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (real Settings or a test SimpleNamespace).
    settings: Any

    task_store: TaskStore
    engine: TaskLifecycleManager

    # Serializes console commands; the engine has its own per-task locks.
    lock: threading.Lock = field(default_factory=threading.Lock)
