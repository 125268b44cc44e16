"""Progress module: hierarchical progress tracking for bookings."""

_STATUS_CHECK = "CHECK (status IN ('pending', 'in_progress', 'completed', 'cancelled', 'on_hold'))"


class ProgressModule:
    """Booking progress tracking.

    Provides:
    - Bookings, milestones and tasks tables
    - Status transition rules for tasks and milestones
    - Milestone and booking rollups with a primary/fallback strategy
    - Progress analytics
    """

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        return "progress"

    @property
    def description(self) -> str:
        """Module description (human-readable)."""
        return "Task, milestone and booking progress with weighted rollups and overdue tracking"

    def get_table_schemas(self) -> dict[str, str]:
        """Return table schemas for this module, parents first."""
        return {
            "bookings": """CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        title TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        progress_percentage INTEGER NOT NULL DEFAULT 0
            CHECK (progress_percentage BETWEEN 0 AND 100)
    )""",
            "milestones": f"""CREATE TABLE IF NOT EXISTS milestones (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        booking_id INTEGER NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'pending' {_STATUS_CHECK},
        progress_percentage INTEGER NOT NULL DEFAULT 0
            CHECK (progress_percentage BETWEEN 0 AND 100),
        weight REAL DEFAULT 1.0 CHECK (weight IS NULL OR weight >= 0),
        due_date TEXT,
        priority TEXT CHECK (priority IS NULL OR priority IN ('low', 'medium', 'high')),
        total_tasks INTEGER NOT NULL DEFAULT 0,
        completed_tasks INTEGER NOT NULL DEFAULT 0,
        in_progress_tasks INTEGER NOT NULL DEFAULT 0,
        pending_tasks INTEGER NOT NULL DEFAULT 0,
        overdue_tasks INTEGER NOT NULL DEFAULT 0,
        total_estimated_hours REAL NOT NULL DEFAULT 0,
        total_actual_hours REAL NOT NULL DEFAULT 0,
        calculated_status TEXT NOT NULL DEFAULT 'pending',
        is_overdue INTEGER NOT NULL DEFAULT 0,
        overdue_since TEXT,
        completed_at TEXT
    )""",
            "tasks": f"""CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        milestone_id INTEGER NOT NULL REFERENCES milestones(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'pending' {_STATUS_CHECK},
        progress_percentage INTEGER NOT NULL DEFAULT 0
            CHECK (progress_percentage BETWEEN 0 AND 100),
        progress_overridden INTEGER NOT NULL DEFAULT 0,
        due_date TEXT,
        estimated_hours REAL CHECK (estimated_hours IS NULL OR estimated_hours >= 0),
        actual_hours REAL CHECK (actual_hours IS NULL OR actual_hours >= 0),
        priority TEXT CHECK (priority IS NULL OR priority IN ('low', 'medium', 'high')),
        is_overdue INTEGER NOT NULL DEFAULT 0,
        overdue_since TEXT,
        completed_at TEXT
    )""",
        }

    def get_indexes(self) -> list[str]:
        """Return indexes for this module's tables."""
        return [
            "CREATE INDEX IF NOT EXISTS idx_milestones_booking_id ON milestones (booking_id)",
            "CREATE INDEX IF NOT EXISTS idx_milestones_status ON milestones (status)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_milestone_id ON tasks (milestone_id)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks (due_date)",
        ]
