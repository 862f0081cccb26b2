"""
SwipeLink Database Module

SQLite operations for deals, tasks, engagement history and system settings.
"""

import sqlite3
import json
import math
from pathlib import Path
from typing import List, Optional, Dict, Any
from datetime import datetime
from contextlib import contextmanager
import logging

from src.adapters.base_adapter import (
    Deal,
    DealFilters,
    DealStore,
    Task,
    TaskStatus,
    TERMINAL_TASK_STATUSES,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class CRMDatabase(DealStore):
    """
    SQLite database manager for the SwipeLink CRM.

    This is the canonical store for deal state and generated tasks.
    """

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Create tables if they don't exist."""
        with self._get_connection() as conn:
            # WAL for concurrent readers while a recompute writes
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 5000")

            conn.executescript(self._get_tables_schema())
            conn.commit()

            self._apply_migrations(conn)
            conn.commit()

            conn.executescript(self._get_indexes_schema())
            conn.commit()

            self._seed_default_settings(conn)
            conn.commit()

            logger.info(f"Database initialized at {self.db_path}")

    def _apply_migrations(self, conn) -> None:
        """Add missing columns to existing tables (for schema updates)."""
        cursor = conn.execute("PRAGMA table_info(deals)")
        existing_cols = {row[1] for row in cursor.fetchall()}

        new_deal_columns = [
            ("session_count", "INTEGER DEFAULT 0"),
            ("total_time_spent", "INTEGER DEFAULT 0"),
            ("tags", "TEXT DEFAULT '[]'"),
        ]

        for col_name, col_type in new_deal_columns:
            if col_name not in existing_cols:
                try:
                    conn.execute(f"ALTER TABLE deals ADD COLUMN {col_name} {col_type}")
                    logger.info(f"Added column {col_name} to deals table")
                except sqlite3.OperationalError:
                    pass  # Column already exists

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _get_tables_schema(self) -> str:
        """Return the CREATE TABLE statements only."""
        return '''
        -- Deals (one per shared property link)
        CREATE TABLE IF NOT EXISTS deals (
            id TEXT PRIMARY KEY,
            name TEXT,
            link_id TEXT,
            agent_id TEXT,
            client_id TEXT,
            stage TEXT NOT NULL DEFAULT 'created',
            status TEXT NOT NULL DEFAULT 'active',
            engagement_score INTEGER DEFAULT 0,
            temperature TEXT DEFAULT 'cold',
            deal_value REAL,
            property_ids TEXT DEFAULT '[]',   -- JSON array
            session_count INTEGER DEFAULT 0,
            total_time_spent INTEGER DEFAULT 0,
            notes TEXT,
            tags TEXT DEFAULT '[]',           -- JSON array
            last_activity_at TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        -- Agent follow-up tasks
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            deal_id TEXT NOT NULL,
            client_id TEXT,
            type TEXT NOT NULL,
            priority TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            due_date TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            is_automated INTEGER DEFAULT 0,
            automation_trigger TEXT,          -- JSON: trigger, rule, score, threshold
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            completed_at TEXT,
            FOREIGN KEY (deal_id) REFERENCES deals(id)
        );

        -- Scored browsing sessions (engagement history)
        CREATE TABLE IF NOT EXISTS engagement_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT,
            deal_id TEXT NOT NULL,
            client_id TEXT,
            started_at TEXT,
            ended_at TEXT,
            duration_seconds INTEGER DEFAULT 0,
            properties_viewed INTEGER DEFAULT 0,
            properties_liked INTEGER DEFAULT 0,
            properties_considered INTEGER DEFAULT 0,
            completion_rate REAL DEFAULT 0,
            engagement_score INTEGER DEFAULT 0,
            temperature TEXT,
            score_change INTEGER,
            temperature_change TEXT,          -- heated_up, cooled_down, stable
            metrics TEXT,                     -- JSON sub-scores + breakdown
            recorded_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (deal_id) REFERENCES deals(id)
        );

        -- System settings
        CREATE TABLE IF NOT EXISTS system_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            value_type TEXT NOT NULL DEFAULT 'string',
            category TEXT NOT NULL DEFAULT 'general',
            description TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_by TEXT
        );
        '''

    def _get_indexes_schema(self) -> str:
        return '''
        CREATE INDEX IF NOT EXISTS idx_deals_stage ON deals(stage);
        CREATE INDEX IF NOT EXISTS idx_deals_status ON deals(status);
        CREATE INDEX IF NOT EXISTS idx_deals_agent ON deals(agent_id);
        CREATE INDEX IF NOT EXISTS idx_deals_created ON deals(created_at);
        CREATE INDEX IF NOT EXISTS idx_tasks_deal ON tasks(deal_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
        CREATE INDEX IF NOT EXISTS idx_engagement_deal ON engagement_sessions(deal_id);
        '''

    def _seed_default_settings(self, conn) -> None:
        """Insert default system settings if they don't exist."""
        default_settings = [
            ('rules_engine_enabled', 'true', 'boolean', 'automation',
             'Master switch for automated task generation'),
            ('task_cooldown_hours', '4', 'integer', 'automation',
             'Hours before the same rule may create another task for a deal'),
            ('rule_hot_lead_enabled', 'true', 'boolean', 'automation',
             'Create immediate outreach tasks for hot leads (score 80+)'),
            ('rule_warm_lead_enabled', 'true', 'boolean', 'automation',
             'Create scheduled follow-up tasks for warm leads (score 50-79)'),
            ('rule_cold_lead_enabled', 'true', 'boolean', 'automation',
             'Create nurture enrollment tasks for cold leads (score 1-49)'),
            ('engagement_history_limit', '50', 'integer', 'reports',
             'Maximum engagement sessions returned with a deal'),
        ]

        for key, value, value_type, category, description in default_settings:
            conn.execute('''
                INSERT OR IGNORE INTO system_settings (key, value, value_type, category, description)
                VALUES (?, ?, ?, ?, ?)
            ''', [key, value, value_type, category, description])

    # ==========================================
    # SYSTEM SETTINGS OPERATIONS
    # ==========================================

    @staticmethod
    def _convert_setting(raw_value: str, value_type: str) -> Any:
        if value_type == 'integer':
            return int(raw_value)
        elif value_type == 'float':
            return float(raw_value)
        elif value_type == 'boolean':
            return raw_value.lower() in ('true', '1', 'yes')
        elif value_type == 'json':
            return json.loads(raw_value)
        return raw_value

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a system setting value with automatic type conversion.

        Args:
            key: Setting key
            default: Default value if setting doesn't exist

        Returns:
            Setting value converted to appropriate type
        """
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT value, value_type FROM system_settings WHERE key = ?',
                (key,)
            ).fetchone()

            if not row:
                return default
            return self._convert_setting(row['value'], row['value_type'])

    def set_setting(self, key: str, value: Any, updated_by: str = None) -> bool:
        """
        Update a system setting value.

        Args:
            key: Setting key
            value: New value (will be converted to string for storage)
            updated_by: Who made the change

        Returns:
            True if a setting was updated
        """
        if isinstance(value, bool):
            str_value = 'true' if value else 'false'
        elif isinstance(value, (dict, list)):
            str_value = json.dumps(value)
        else:
            str_value = str(value)

        with self._get_connection() as conn:
            cursor = conn.execute('''
                UPDATE system_settings
                SET value = ?, updated_at = CURRENT_TIMESTAMP, updated_by = ?
                WHERE key = ?
            ''', [str_value, updated_by, key])
            conn.commit()
            return cursor.rowcount > 0

    def get_all_settings(self, category: str = None) -> List[Dict[str, Any]]:
        """
        Get all system settings, optionally filtered by category.

        Returns:
            List of setting dictionaries with a 'converted_value' key
        """
        with self._get_connection() as conn:
            if category:
                rows = conn.execute(
                    'SELECT * FROM system_settings WHERE category = ? ORDER BY key',
                    (category,)
                ).fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM system_settings ORDER BY category, key'
                ).fetchall()

            settings = []
            for row in rows:
                setting = dict(row)
                setting['converted_value'] = self._convert_setting(
                    setting['value'], setting['value_type']
                )
                settings.append(setting)
            return settings

    # ==========================================
    # DEAL OPERATIONS
    # ==========================================

    def create_deal(self, deal: Deal) -> bool:
        data = deal.to_dict()
        columns = ', '.join(data.keys())
        placeholders = ', '.join(['?' for _ in data])

        with self._get_connection() as conn:
            conn.execute(
                f'INSERT INTO deals ({columns}) VALUES ({placeholders})',
                list(data.values())
            )
            conn.commit()
        return True

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        """Get deal by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT * FROM deals WHERE id = ?',
                (deal_id,)
            ).fetchone()
            return Deal.from_row(dict(row)) if row else None

    def update_deal(self, deal: Deal) -> bool:
        data = deal.to_dict()
        deal_id = data.pop('id')
        data.pop('created_at')
        assignments = ', '.join(f'{col} = ?' for col in data)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f'UPDATE deals SET {assignments} WHERE id = ?',
                list(data.values()) + [deal_id]
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_deals(
        self,
        filters: Optional[DealFilters] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """
        Get a page of deals matching the filters, newest first.

        Returns:
            {'data': [Deal], 'pagination': {page, limit, total, total_pages}}
        """
        filters = filters or DealFilters()
        page = max(1, int(page))
        limit = min(MAX_PAGE_SIZE, max(1, int(limit)))

        where = []
        params: List[Any] = []

        def add_in(column: str, values) -> None:
            if values:
                placeholders = ', '.join(['?' for _ in values])
                where.append(f'{column} IN ({placeholders})')
                params.extend(getattr(v, 'value', v) for v in values)

        add_in('status', filters.status)
        add_in('stage', filters.stage)
        add_in('temperature', filters.temperature)

        if filters.search:
            where.append('LOWER(name) LIKE ?')
            params.append(f'%{filters.search.lower()}%')
        if filters.agent_id:
            where.append('agent_id = ?')
            params.append(filters.agent_id)
        if filters.start_date:
            where.append('created_at >= ?')
            params.append(filters.start_date.isoformat())
        if filters.end_date:
            where.append('created_at <= ?')
            params.append(filters.end_date.isoformat())
        if filters.min_value is not None:
            where.append('deal_value >= ?')
            params.append(filters.min_value)
        if filters.max_value is not None:
            where.append('deal_value <= ?')
            params.append(filters.max_value)

        where_sql = f" WHERE {' AND '.join(where)}" if where else ''

        with self._get_connection() as conn:
            total = conn.execute(
                f'SELECT COUNT(*) FROM deals{where_sql}', params
            ).fetchone()[0]
            rows = conn.execute(
                f'SELECT * FROM deals{where_sql} '
                f'ORDER BY created_at DESC, id LIMIT ? OFFSET ?',
                params + [limit, (page - 1) * limit]
            ).fetchall()

        return {
            'data': [Deal.from_row(dict(row)) for row in rows],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'total_pages': math.ceil(total / limit) if total else 0,
            },
        }

    # ==========================================
    # TASK OPERATIONS
    # ==========================================

    def insert_tasks(self, tasks: List[Task]) -> int:
        """Insert tasks in one transaction. Returns the number written."""
        if not tasks:
            return 0

        records = [task.to_dict() for task in tasks]
        columns = list(records[0].keys())
        placeholders = ', '.join(['?' for _ in columns])

        with self._get_connection() as conn:
            conn.executemany(
                f'INSERT INTO tasks ({", ".join(columns)}) VALUES ({placeholders})',
                [[record[c] for c in columns] for record in records]
            )
            conn.commit()

        logger.info(f"Inserted {len(records)} tasks")
        return len(records)

    def get_tasks_for_deal(self, deal_id: str, automated_only: bool = False) -> List[Task]:
        """Get tasks for a deal, newest first."""
        query = 'SELECT * FROM tasks WHERE deal_id = ?'
        if automated_only:
            query += ' AND is_automated = 1'
        query += ' ORDER BY created_at DESC'

        with self._get_connection() as conn:
            rows = conn.execute(query, (deal_id,)).fetchall()
            return [Task.from_row(dict(row)) for row in rows]

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._get_connection() as conn:
            row = conn.execute('SELECT * FROM tasks WHERE id = ?', (task_id,)).fetchone()
            return Task.from_row(dict(row)) if row else None

    def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        """Record agent progress on a task. Stamps completed_at for terminal statuses."""
        completed_at = datetime.now().isoformat() if status in TERMINAL_TASK_STATUSES else None

        with self._get_connection() as conn:
            cursor = conn.execute(
                'UPDATE tasks SET status = ?, completed_at = ? WHERE id = ?',
                [status.value, completed_at, task_id]
            )
            conn.commit()
            return cursor.rowcount > 0

    # ==========================================
    # ENGAGEMENT HISTORY
    # ==========================================

    def insert_engagement_session(self, record: Dict[str, Any]) -> bool:
        record = dict(record)
        if isinstance(record.get('metrics'), dict):
            record['metrics'] = json.dumps(record['metrics'])

        columns = ', '.join(record.keys())
        placeholders = ', '.join(['?' for _ in record])

        with self._get_connection() as conn:
            conn.execute(
                f'INSERT INTO engagement_sessions ({columns}) VALUES ({placeholders})',
                list(record.values())
            )
            conn.commit()
        return True

    def get_engagement_history(self, deal_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Engagement sessions for a deal, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute('''
                SELECT * FROM engagement_sessions
                WHERE deal_id = ?
                ORDER BY recorded_at DESC, id DESC
                LIMIT ?
            ''', (deal_id, limit)).fetchall()

        history = []
        for row in rows:
            entry = dict(row)
            try:
                entry['metrics'] = json.loads(entry['metrics']) if entry.get('metrics') else {}
            except (json.JSONDecodeError, TypeError):
                entry['metrics'] = {}
            history.append(entry)
        return history
