"""
Run repository tables.

Defines table names and DDL statements for the durable bookkeeping of job
instances, job executions, step executions and the skip log.

Architecture:
    ::

        ┌──────────────────────┐     ┌──────────────────────────┐
        │ batch_job_instances  │────>│ batch_job_executions     │
        │ (job_name, key)      │     │ (status, params, times)  │
        └──────────────────────┘     └────────────┬─────────────┘
                                                  │
                                     ┌────────────▼─────────────┐
                                     │ batch_step_executions    │
                                     │ (counters, context)      │
                                     └────────────┬─────────────┘
                                                  │
                                     ┌────────────▼─────────────┐
                                     │ batch_skip_log           │
                                     │ (append-only)            │
                                     └──────────────────────────┘

    ``batch_job_instances`` carries ``UNIQUE (job_name, instance_key)`` so
    two processes can never create the same instance twice.

Examples:
    >>> from batchspine.core.schema import BATCH_TABLES, create_tables
    >>> BATCH_TABLES["job_executions"]
    'batch_job_executions'
    >>> create_tables(conn)

Note: this module only issues ``CREATE TABLE IF NOT EXISTS``; schema
migrations are out of scope.
"""

BATCH_TABLES = {
    "job_instances": "batch_job_instances",
    "job_executions": "batch_job_executions",
    "step_executions": "batch_step_executions",
    "skip_log": "batch_skip_log",
}


BATCH_DDL = {
    "job_instances": """
        CREATE TABLE IF NOT EXISTS batch_job_instances (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_name TEXT NOT NULL,
            instance_key TEXT NOT NULL,     -- sha256 of identifying params
            params_json TEXT NOT NULL,      -- identifying params, canonical JSON
            created_at TEXT NOT NULL,

            UNIQUE (job_name, instance_key)
        )
    """,
    "job_executions": """
        CREATE TABLE IF NOT EXISTS batch_job_executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            instance_id INTEGER NOT NULL REFERENCES batch_job_instances(id),
            job_name TEXT NOT NULL,
            params_json TEXT NOT NULL,      -- all params incl. non-identifying
            status TEXT NOT NULL,           -- STARTING, STARTED, COMPLETED, ...
            created_at TEXT NOT NULL,
            started_at TEXT,
            ended_at TEXT,
            exit_description TEXT,
            failures_json TEXT              -- JSON list of error dicts
        )
    """,
    "step_executions": """
        CREATE TABLE IF NOT EXISTS batch_step_executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_execution_id INTEGER NOT NULL REFERENCES batch_job_executions(id),
            step_name TEXT NOT NULL,
            status TEXT NOT NULL,           -- READY, RUNNING, COMPLETED, FAILED, STOPPED

            -- Counters
            read_count INTEGER NOT NULL DEFAULT 0,
            write_count INTEGER NOT NULL DEFAULT 0,
            filter_count INTEGER NOT NULL DEFAULT 0,
            skip_count INTEGER NOT NULL DEFAULT 0,
            read_skip_count INTEGER NOT NULL DEFAULT 0,
            process_skip_count INTEGER NOT NULL DEFAULT 0,
            retry_count INTEGER NOT NULL DEFAULT 0,
            commit_count INTEGER NOT NULL DEFAULT 0,
            rollback_count INTEGER NOT NULL DEFAULT 0,

            -- Restart checkpoint
            context_json TEXT NOT NULL DEFAULT '{}',

            started_at TEXT,
            ended_at TEXT,
            exit_description TEXT
        )
    """,
    "skip_log": """
        CREATE TABLE IF NOT EXISTS batch_skip_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            step_execution_id INTEGER NOT NULL REFERENCES batch_step_executions(id),
            job_execution_id INTEGER NOT NULL,
            phase TEXT NOT NULL,            -- read, process
            item_repr TEXT,
            error_type TEXT NOT NULL,
            error_message TEXT,
            created_at TEXT NOT NULL
        )
    """,
}


BATCH_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_batch_exec_instance ON batch_job_executions(instance_id)",
    "CREATE INDEX IF NOT EXISTS idx_batch_exec_status ON batch_job_executions(status)",
    "CREATE INDEX IF NOT EXISTS idx_batch_step_exec ON batch_step_executions(job_execution_id)",
    "CREATE INDEX IF NOT EXISTS idx_batch_skip_step ON batch_skip_log(step_execution_id)",
]


def create_tables(conn) -> None:
    """Create all run repository tables and indexes (idempotent)."""
    for ddl in BATCH_DDL.values():
        conn.execute(ddl)
    for index in BATCH_INDEXES:
        conn.execute(index)
    conn.commit()
