"""
DuckDB storage implementation for the riskcast core.

Provides the shared store every dispatcher tick and worker batch coordinates
through. Job rows are only ever mutated by conditional ``UPDATE ... RETURNING``
statements, so the returned rows are the lease/compare-and-swap signal.
Events, settings and snapshots are written by natural key so concurrent
writers converge.

Key features:
- Thread-local cursors over one shared database instance
- Automatic schema creation on first access
- JSON columns for snapshot breakdowns
- Metric tables resolved from validated identifiers
"""

import json
import re
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import duckdb
import structlog

from riskcast.errors import InvalidMetricReference, StorageError
from riskcast.models.definitions import Definition, MetricReference, Setting, SeverityMapping
from riskcast.models.enums import EventSource, JobStatus, JobType, Severity, Zone
from riskcast.models.events import Event
from riskcast.models.jobs import Job
from riskcast.models.scores import (
    DECAY_DAYS,
    Contributor,
    DecayWeights,
    GaugeThreshold,
    LiveSnapshot,
    ScoreSnapshot,
)
from riskcast.utils.timeutil import add_days, to_naive_utc

from .base import StorageBackend

logger = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")

APPEND_CONFLICT_RETRIES = 5

_JOB_COLUMNS = (
    "id, job_type, user_id, target_date, timezone, status, attempts, "
    "locked_at, last_error, result_status, created_at, updated_at"
)

_EVENT_COLUMNS = "event_id, user_id, type, kind, source, occurred_date, notes, contributors, created_at"

_DEFINITION_COLUMNS = (
    "user_id, label, kind, category, direction, metric_table, metric_column, "
    "value_kind, unit, default_threshold, baseline_window_days, baseline_strategy, "
    "bedtime, enabled_by_default, display_group"
)

_DAY_COLUMNS = ", ".join(f"day_{i}" for i in range(DECAY_DAYS))


def _checked_reference(metric: MetricReference) -> tuple[str, str]:
    if not _IDENTIFIER.match(metric.table) or not _IDENTIFIER.match(metric.column):
        raise InvalidMetricReference(metric.table, metric.column)
    return metric.table, metric.column


def _sql_type_for(value: Any) -> str:
    if isinstance(value, bool):
        return "BOOLEAN"
    if isinstance(value, (int, float)):
        return "DOUBLE"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    return "VARCHAR"


def _row_to_job(row: tuple) -> Job:
    return Job(
        id=row[0],
        job_type=row[1],
        user_id=row[2],
        target_date=row[3],
        timezone=row[4],
        status=row[5],
        attempts=row[6],
        locked_at=row[7],
        last_error=row[8],
        result_status=row[9],
        created_at=row[10],
        updated_at=row[11],
    )


def _row_to_event(row: tuple) -> Event:
    return Event(
        event_id=row[0],
        user_id=row[1],
        type=row[2],
        kind=row[3],
        source=row[4],
        occurred_date=row[5],
        notes=row[6],
        contributors=list(row[7] or []),
        created_at=row[8],
    )


def _contributors_json(contributors: list[Contributor]) -> str:
    return json.dumps([c.model_dump(mode="json") for c in contributors])


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    One root connection owns the database instance; each thread works through
    its own cursor on it, so ``:memory:`` databases are shared across the
    worker pool as well.

    Attributes:
        db_path: Path to the DuckDB database file, or ``:memory:``
        _local: Thread-local storage for per-thread cursors
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/riskcast.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file (default: ./data/riskcast.duckdb)
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        try:
            self._root = duckdb.connect(db_path)
        except duckdb.Error as e:
            logger.error("duckdb_connection_failed", db_path=db_path, error=str(e))
            raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        logger.info("duckdb_storage_initialized", db_path=db_path)
        self._initialize_schema()

    def close(self) -> None:
        self._root.close()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB cursor.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = self._root.cursor()
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except duckdb.Error as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    @contextmanager
    def _transaction(self):
        """Run a block in an explicit transaction, rolling back on error."""
        with self._get_connection() as conn:
            conn.begin()
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def _initialize_schema(self):
        """
        Initialize all database tables.

        Idempotent and safe to call multiple times. Only natural keys carry
        constraints; columns mutated by conditional updates are left unindexed.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    # =========================================================
                    # Location records
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS user_location_daily (
                            user_id VARCHAR NOT NULL,
                            date DATE NOT NULL,
                            timezone VARCHAR NOT NULL,
                            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            PRIMARY KEY (user_id, date)
                        )
                    """)

                    # =========================================================
                    # Definition Catalog
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS definitions (
                            user_id VARCHAR NOT NULL,
                            label VARCHAR NOT NULL,
                            kind VARCHAR NOT NULL,
                            category VARCHAR,
                            direction VARCHAR NOT NULL,
                            metric_table VARCHAR NOT NULL,
                            metric_column VARCHAR NOT NULL,
                            value_kind VARCHAR NOT NULL,
                            unit VARCHAR,
                            default_threshold DOUBLE,
                            baseline_window_days INTEGER,
                            baseline_strategy VARCHAR NOT NULL,
                            bedtime BOOLEAN NOT NULL,
                            enabled_by_default BOOLEAN NOT NULL,
                            display_group VARCHAR,
                            PRIMARY KEY (user_id, label)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS definition_settings (
                            user_id VARCHAR NOT NULL,
                            label VARCHAR NOT NULL,
                            enabled BOOLEAN NOT NULL,
                            threshold DOUBLE,
                            PRIMARY KEY (user_id, label)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS severity_mappings (
                            user_id VARCHAR NOT NULL,
                            label VARCHAR NOT NULL,
                            severity VARCHAR NOT NULL,
                            PRIMARY KEY (user_id, label)
                        )
                    """)

                    # =========================================================
                    # Scoring configuration
                    # =========================================================

                    day_columns = ",\n".join(
                        f"day_{i} DOUBLE NOT NULL" for i in range(DECAY_DAYS)
                    )
                    conn.execute(f"""
                        CREATE TABLE IF NOT EXISTS risk_decay_weights (
                            user_id VARCHAR NOT NULL,
                            severity VARCHAR NOT NULL,
                            {day_columns},
                            PRIMARY KEY (user_id, severity)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS risk_gauge_thresholds (
                            user_id VARCHAR NOT NULL,
                            zone VARCHAR NOT NULL,
                            min_value DOUBLE NOT NULL,
                            PRIMARY KEY (user_id, zone)
                        )
                    """)

                    # =========================================================
                    # Event Store
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS events (
                            event_id VARCHAR PRIMARY KEY,
                            user_id VARCHAR NOT NULL,
                            type VARCHAR NOT NULL,
                            kind VARCHAR NOT NULL,
                            source VARCHAR NOT NULL,
                            occurred_date DATE NOT NULL,
                            notes VARCHAR,
                            contributors VARCHAR[],
                            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            UNIQUE (user_id, type, source, occurred_date)
                        )
                    """)

                    # =========================================================
                    # Job Queue
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS jobs (
                            id VARCHAR PRIMARY KEY,
                            job_type VARCHAR NOT NULL,
                            user_id VARCHAR NOT NULL,
                            target_date DATE NOT NULL,
                            timezone VARCHAR,
                            status VARCHAR NOT NULL,
                            attempts INTEGER NOT NULL DEFAULT 0,
                            locked_at TIMESTAMP,
                            last_error VARCHAR,
                            result_status VARCHAR,
                            created_at TIMESTAMP NOT NULL,
                            updated_at TIMESTAMP NOT NULL,
                            UNIQUE (job_type, user_id, target_date)
                        )
                    """)

                    # =========================================================
                    # Physiological signals and the derived stress index
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS resting_hr_daily (
                            user_id VARCHAR NOT NULL,
                            date DATE NOT NULL,
                            value_bpm DOUBLE
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS hrv_daily (
                            user_id VARCHAR NOT NULL,
                            date DATE NOT NULL,
                            value_rmssd_ms DOUBLE
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS stress_index_daily (
                            user_id VARCHAR NOT NULL,
                            date DATE NOT NULL,
                            value DOUBLE,
                            rhr_z DOUBLE,
                            hrv_z DOUBLE,
                            baseline_window_days DOUBLE,
                            computed_at TIMESTAMP
                        )
                    """)

                    # =========================================================
                    # Score Store
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS risk_score_daily (
                            user_id VARCHAR NOT NULL,
                            date DATE NOT NULL,
                            score INTEGER NOT NULL,
                            zone VARCHAR NOT NULL,
                            percent INTEGER NOT NULL,
                            top_contributors JSON NOT NULL,
                            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            PRIMARY KEY (user_id, date)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS risk_score_live (
                            user_id VARCHAR PRIMARY KEY,
                            date DATE NOT NULL,
                            score INTEGER NOT NULL,
                            zone VARCHAR NOT NULL,
                            percent INTEGER NOT NULL,
                            top_contributors JSON NOT NULL,
                            forecast JSON NOT NULL,
                            day_risks JSON NOT NULL,
                            updated_at TIMESTAMP NOT NULL
                        )
                    """)

                    self._initialized = True

            except duckdb.Error as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    # =========================================================================
    # Metric Store Implementation
    # =========================================================================

    def read_metric_value(
        self, user_id: str, metric: MetricReference, day: date
    ) -> Optional[Any]:
        """Read one user's value for one metric on one day."""
        table, column = _checked_reference(metric)
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {column} FROM {table} WHERE user_id = ? AND date = ? LIMIT 1",
                    [user_id, day],
                ).fetchone()
                return row[0] if row else None

        except duckdb.Error as e:
            logger.error(
                "read_metric_value_failed", user_id=user_id, metric=metric.key, error=str(e)
            )
            raise StorageError(f"Failed to read {metric.key}: {e}") from e

    def read_metric_history(
        self, user_id: str, metric: MetricReference, start: date, end: date
    ) -> list[Any]:
        """Read non-null metric values in an inclusive date range."""
        table, column = _checked_reference(metric)
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {column} FROM {table}
                    WHERE user_id = ? AND date >= ? AND date <= ? AND {column} IS NOT NULL
                    ORDER BY date ASC
                    """,
                    [user_id, start, end],
                ).fetchall()
                return [row[0] for row in rows]

        except duckdb.Error as e:
            logger.error(
                "read_metric_history_failed", user_id=user_id, metric=metric.key, error=str(e)
            )
            raise StorageError(f"Failed to read history for {metric.key}: {e}") from e

    def write_metric_value(
        self, user_id: str, metric: MetricReference, day: date, value: Any
    ) -> None:
        """Upsert one per-day metric value, creating the table or column on first use."""
        table, column = _checked_reference(metric)
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} (user_id VARCHAR NOT NULL, date DATE NOT NULL)"
                )
                conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {_sql_type_for(value)}"
                )
                updated = conn.execute(
                    f"UPDATE {table} SET {column} = ? WHERE user_id = ? AND date = ? RETURNING user_id",
                    [value, user_id, day],
                ).fetchall()
                if not updated:
                    conn.execute(
                        f"INSERT INTO {table} (user_id, date, {column}) VALUES (?, ?, ?)",
                        [user_id, day, value],
                    )
                logger.debug("metric_value_written", user_id=user_id, metric=metric.key, day=str(day))

        except duckdb.Error as e:
            logger.error(
                "write_metric_value_failed", user_id=user_id, metric=metric.key, error=str(e)
            )
            raise StorageError(f"Failed to write {metric.key}: {e}") from e

    # =========================================================================
    # Location records Implementation
    # =========================================================================

    def write_location(self, user_id: str, day: date, timezone: str) -> None:
        """Upsert the timezone observed for a user on a day."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO user_location_daily (user_id, date, timezone, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    [user_id, day, timezone],
                )

        except duckdb.Error as e:
            logger.error("write_location_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to write location: {e}") from e

    def resolve_timezone(self, user_id: str, approx_date: date) -> Optional[str]:
        """Resolve a timezone from the nearest location record within one day."""
        try:
            with self._get_connection() as conn:
                for day in (add_days(approx_date, -1), approx_date, add_days(approx_date, 1)):
                    row = conn.execute(
                        """
                        SELECT timezone FROM user_location_daily
                        WHERE user_id = ? AND date = ? AND timezone IS NOT NULL
                        ORDER BY updated_at DESC
                        LIMIT 1
                        """,
                        [user_id, day],
                    ).fetchone()
                    if row:
                        return row[0]
                return None

        except duckdb.Error as e:
            logger.error("resolve_timezone_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to resolve timezone: {e}") from e

    def list_location_users(self, since: date) -> list[str]:
        """Users with a location record on or after ``since``."""
        return self._distinct_users(
            "SELECT DISTINCT user_id FROM user_location_daily WHERE date >= ? ORDER BY user_id",
            [since],
        )

    def _distinct_users(self, query: str, params: Optional[list] = None) -> list[str]:
        try:
            with self._get_connection() as conn:
                return [row[0] for row in conn.execute(query, params or []).fetchall()]

        except duckdb.Error as e:
            logger.error("list_users_failed", error=str(e))
            raise StorageError(f"Failed to list users: {e}") from e

    # =========================================================================
    # Definition Catalog Implementation
    # =========================================================================

    def write_definition(self, definition: Definition) -> None:
        """Upsert a definition keyed on (user_id, label)."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO definitions ({_DEFINITION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        definition.user_id,
                        definition.label,
                        definition.kind.value,
                        definition.category,
                        definition.direction.value,
                        definition.metric.table,
                        definition.metric.column,
                        definition.value_kind.value,
                        definition.unit,
                        definition.default_threshold,
                        definition.baseline_window_days,
                        definition.baseline_strategy.value,
                        definition.bedtime,
                        definition.enabled_by_default,
                        definition.display_group,
                    ],
                )
                logger.debug("definition_written", user_id=definition.user_id, label=definition.label)

        except duckdb.Error as e:
            logger.error("write_definition_failed", label=definition.label, error=str(e))
            raise StorageError(f"Failed to write definition: {e}") from e

    def read_definitions(self, user_id: str) -> list[Definition]:
        """All definitions a user owns, ordered by label."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"SELECT {_DEFINITION_COLUMNS} FROM definitions WHERE user_id = ? ORDER BY label",
                    [user_id],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_definitions_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read definitions: {e}") from e

        return [
            Definition(
                user_id=row[0],
                label=row[1],
                kind=row[2],
                category=row[3],
                direction=row[4],
                metric=MetricReference(table=row[5], column=row[6]),
                value_kind=row[7],
                unit=row[8],
                default_threshold=row[9],
                baseline_window_days=row[10],
                baseline_strategy=row[11],
                bedtime=row[12],
                enabled_by_default=row[13],
                display_group=row[14],
            )
            for row in rows
        ]

    def list_definition_users(self) -> list[str]:
        """Users owning at least one definition."""
        return self._distinct_users("SELECT DISTINCT user_id FROM definitions ORDER BY user_id")

    def write_setting(self, setting: Setting) -> None:
        """Upsert a per-user override."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO definition_settings (user_id, label, enabled, threshold)
                    VALUES (?, ?, ?, ?)
                    """,
                    [setting.user_id, setting.label, setting.enabled, setting.threshold],
                )

        except duckdb.Error as e:
            logger.error("write_setting_failed", label=setting.label, error=str(e))
            raise StorageError(f"Failed to write setting: {e}") from e

    def read_settings(self, user_id: str) -> dict[str, Setting]:
        """Settings for a user keyed by label."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT label, enabled, threshold FROM definition_settings WHERE user_id = ?",
                    [user_id],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_settings_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read settings: {e}") from e

        return {
            row[0]: Setting(user_id=user_id, label=row[0], enabled=row[1], threshold=row[2])
            for row in rows
        }

    def write_severity_mapping(self, mapping: SeverityMapping) -> None:
        """Upsert the severity attached to a label."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO severity_mappings (user_id, label, severity) VALUES (?, ?, ?)",
                    [mapping.user_id, mapping.label, mapping.severity.value],
                )

        except duckdb.Error as e:
            logger.error("write_severity_mapping_failed", label=mapping.label, error=str(e))
            raise StorageError(f"Failed to write severity mapping: {e}") from e

    def read_severity_mappings(self, user_id: str) -> dict[str, Severity]:
        """Severities for a user keyed by label."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT label, severity FROM severity_mappings WHERE user_id = ?",
                    [user_id],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_severity_mappings_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read severity mappings: {e}") from e

        return {row[0]: Severity(row[1].upper()) for row in rows}

    # =========================================================================
    # Scoring configuration Implementation
    # =========================================================================

    def write_decay_weights(self, user_id: str, weights: DecayWeights) -> None:
        """Upsert one severity's decay curve."""
        placeholders = ", ".join(["?"] * (DECAY_DAYS + 2))
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO risk_decay_weights (user_id, severity, {_DAY_COLUMNS})
                    VALUES ({placeholders})
                    """,
                    [user_id, weights.severity.value, *weights.weights],
                )

        except duckdb.Error as e:
            logger.error("write_decay_weights_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to write decay weights: {e}") from e

    def read_decay_weights(self, user_id: str) -> dict[Severity, DecayWeights]:
        """Decay curves keyed by severity."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"SELECT severity, {_DAY_COLUMNS} FROM risk_decay_weights WHERE user_id = ?",
                    [user_id],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_decay_weights_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read decay weights: {e}") from e

        curves = {}
        for row in rows:
            severity = Severity(row[0].upper())
            curves[severity] = DecayWeights(severity=severity, weights=list(row[1:]))
        return curves

    def write_gauge_threshold(self, user_id: str, threshold: GaugeThreshold) -> None:
        """Upsert one zone's minimum score."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO risk_gauge_thresholds (user_id, zone, min_value) VALUES (?, ?, ?)",
                    [user_id, threshold.zone.value, threshold.min_value],
                )

        except duckdb.Error as e:
            logger.error("write_gauge_threshold_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to write gauge threshold: {e}") from e

    def read_gauge_thresholds(self, user_id: str) -> dict[Zone, float]:
        """Zone minimums for a user."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT zone, min_value FROM risk_gauge_thresholds WHERE user_id = ?",
                    [user_id],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_gauge_thresholds_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read gauge thresholds: {e}") from e

        return {Zone(row[0].upper()): row[1] for row in rows}

    def list_scoring_users(self) -> list[str]:
        """Users with decay weights configured."""
        return self._distinct_users("SELECT DISTINCT user_id FROM risk_decay_weights ORDER BY user_id")

    # =========================================================================
    # Event Store Implementation
    # =========================================================================

    def insert_event(self, event: Event) -> bool:
        """Insert an event unless its natural key already exists."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    INSERT INTO events ({_EVENT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        event.event_id,
                        event.user_id,
                        event.type,
                        event.kind.value,
                        event.source.value,
                        event.occurred_date,
                        event.notes,
                        event.contributors or None,
                        to_naive_utc(event.created_at),
                    ],
                )
                logger.debug(
                    "event_written",
                    user_id=event.user_id,
                    type=event.type,
                    occurred_date=str(event.occurred_date),
                )
                return True

        except duckdb.ConstraintException:
            logger.debug(
                "duplicate_event_skipped",
                user_id=event.user_id,
                type=event.type,
                occurred_date=str(event.occurred_date),
            )
            return False
        except duckdb.TransactionException as e:
            # A racing insert of the same key fails at commit rather than at insert
            if not self._event_exists(event.user_id, event.type, event.source, event.occurred_date):
                logger.error("insert_event_failed", user_id=event.user_id, type=event.type, error=str(e))
                raise StorageError(f"Failed to insert event: {e}") from e
            logger.debug(
                "duplicate_event_skipped",
                user_id=event.user_id,
                type=event.type,
                occurred_date=str(event.occurred_date),
                conflict=True,
            )
            return False
        except duckdb.Error as e:
            logger.error("insert_event_failed", user_id=event.user_id, type=event.type, error=str(e))
            raise StorageError(f"Failed to insert event: {e}") from e

    def append_event_note(
        self,
        user_id: str,
        event_type: str,
        source: EventSource,
        day: date,
        note: str,
        contributor: Optional[str] = None,
    ) -> bool:
        """Append a reason line and contributor to an existing event, skipping repeats."""
        set_clauses = [
            """
            notes = CASE
                WHEN notes IS NULL OR notes = '' THEN ?
                WHEN contains(notes, ?) THEN notes
                ELSE notes || ?
            END
            """
        ]
        params: list[Any] = [note, note, "\n" + note]

        if contributor:
            set_clauses.append(
                """
                contributors = CASE
                    WHEN list_contains(coalesce(contributors, []::VARCHAR[]), ?) THEN contributors
                    ELSE list_append(coalesce(contributors, []::VARCHAR[]), ?)
                END
                """
            )
            params.extend([contributor, contributor])

        params.extend([user_id, event_type, source.value, day])

        query = f"""
            UPDATE events SET {', '.join(set_clauses)}
            WHERE user_id = ? AND type = ? AND source = ? AND occurred_date = ?
            RETURNING event_id
        """

        # Idempotent update; write-write conflicts are retried
        for attempt in range(1, APPEND_CONFLICT_RETRIES + 1):
            try:
                with self._get_connection() as conn:
                    return bool(conn.execute(query, params).fetchall())

            except duckdb.TransactionException as e:
                if attempt == APPEND_CONFLICT_RETRIES:
                    logger.error("append_event_note_failed", user_id=user_id, type=event_type, error=str(e))
                    raise StorageError(f"Failed to append event note: {e}") from e
                logger.debug("append_event_note_conflict", user_id=user_id, type=event_type, attempt=attempt)
            except duckdb.Error as e:
                logger.error("append_event_note_failed", user_id=user_id, type=event_type, error=str(e))
                raise StorageError(f"Failed to append event note: {e}") from e
        return False

    def _event_exists(self, user_id: str, event_type: str, source: EventSource, day: date) -> bool:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT 1 FROM events
                    WHERE user_id = ? AND type = ? AND source = ? AND occurred_date = ?
                    LIMIT 1
                    """,
                    [user_id, event_type, source.value, day],
                ).fetchone()
                return row is not None

        except duckdb.Error as e:
            logger.error("read_event_failed", user_id=user_id, type=event_type, error=str(e))
            raise StorageError(f"Failed to read event: {e}") from e

    def read_events(self, user_id: str, start: date, end: date) -> list[Event]:
        """Events with ``start <= occurred_date < end``."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_EVENT_COLUMNS} FROM events
                    WHERE user_id = ? AND occurred_date >= ? AND occurred_date < ?
                    ORDER BY occurred_date ASC, type ASC
                    """,
                    [user_id, start, end],
                ).fetchall()

        except duckdb.Error as e:
            logger.error("read_events_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read events: {e}") from e

        events = [_row_to_event(row) for row in rows]
        logger.debug("events_read", user_id=user_id, count=len(events))
        return events

    # =========================================================================
    # Job Queue Implementation
    # =========================================================================

    def enqueue_job(self, job: Job) -> bool:
        """Insert a queued job; a duplicate natural key is a no-op."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    INSERT INTO jobs ({_JOB_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        job.id,
                        job.job_type.value,
                        job.user_id,
                        job.target_date,
                        job.timezone,
                        JobStatus.QUEUED.value,
                        0,
                        None,
                        None,
                        None,
                        to_naive_utc(job.created_at),
                        to_naive_utc(job.updated_at),
                    ],
                )
                logger.debug(
                    "job_enqueued",
                    job_id=job.id,
                    job_type=job.job_type.value,
                    user_id=job.user_id,
                    target_date=str(job.target_date),
                )
                return True

        except (duckdb.ConstraintException, duckdb.TransactionException):
            # Concurrent inserts of one key surface as a write-write conflict
            logger.debug(
                "duplicate_job_skipped",
                job_type=job.job_type.value,
                user_id=job.user_id,
                target_date=str(job.target_date),
            )
            return False
        except duckdb.Error as e:
            logger.error("enqueue_job_failed", user_id=job.user_id, error=str(e))
            raise StorageError(f"Failed to enqueue job: {e}") from e

    def requeue_job(
        self,
        job_type: JobType,
        user_id: str,
        target_date: date,
        timezone: Optional[str],
        now: datetime,
        finished_before: Optional[datetime] = None,
    ) -> bool:
        """Ensure a job is queued, resetting a completed one; ``error`` rows stay terminal."""
        now = to_naive_utc(now)
        job = Job(
            job_type=job_type,
            user_id=user_id,
            target_date=target_date,
            timezone=timezone,
            created_at=now,
            updated_at=now,
        )
        if self.enqueue_job(job):
            return True

        query = """
            UPDATE jobs
            SET status = 'queued', attempts = 0, locked_at = NULL, last_error = NULL,
                result_status = NULL, timezone = coalesce(?, timezone), updated_at = ?
            WHERE job_type = ? AND user_id = ? AND target_date = ?
              AND status = 'done'
        """
        params: list[Any] = [timezone, now, job_type.value, user_id, target_date]

        if finished_before is not None:
            query += " AND updated_at < ?"
            params.append(to_naive_utc(finished_before))

        query += " RETURNING id"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                if rows:
                    logger.debug("job_requeued", job_id=rows[0][0], job_type=job_type.value)
                return bool(rows)

        except duckdb.TransactionException as e:
            logger.warning("requeue_job_conflict", user_id=user_id, error=str(e))
            return False
        except duckdb.Error as e:
            logger.error("requeue_job_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to requeue job: {e}") from e

    def select_jobs(
        self,
        now: datetime,
        limit: int,
        max_attempts: int,
        stale_cutoffs: dict[JobType, datetime],
        job_types: Optional[list[JobType]] = None,
    ) -> list[Job]:
        """Pick queued and stale-running candidate jobs, oldest first."""
        query = f"SELECT {_JOB_COLUMNS} FROM jobs WHERE ((status = 'queued' AND attempts < ?)"
        params: list[Any] = [max_attempts]

        if stale_cutoffs:
            cases = " ".join("WHEN ? THEN ?" for _ in stale_cutoffs)
            query += f" OR (status = 'running' AND locked_at < CASE job_type {cases} ELSE ? END)"
            for job_type, cutoff in stale_cutoffs.items():
                params.extend([job_type.value, to_naive_utc(cutoff)])
            params.append(min(to_naive_utc(c) for c in stale_cutoffs.values()))
        query += ")"

        if job_types:
            placeholders = ",".join(["?"] * len(job_types))
            query += f" AND job_type IN ({placeholders})"
            params.extend(jt.value for jt in job_types)

        query += " ORDER BY created_at ASC, id ASC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()

        except duckdb.Error as e:
            logger.error("select_jobs_failed", error=str(e))
            raise StorageError(f"Failed to select jobs: {e}") from e

        return [_row_to_job(row) for row in rows]

    def lease_job(
        self, job_id: str, now: datetime, max_attempts: int, stale_cutoff: datetime
    ) -> Optional[Job]:
        """Take the lease with one conditional update; no returned row means no lease."""
        now = to_naive_utc(now)
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"""
                    UPDATE jobs
                    SET status = 'running', locked_at = ?, attempts = attempts + 1, updated_at = ?
                    WHERE id = ? AND attempts < ? AND (
                        status = 'queued'
                        OR (status = 'running' AND locked_at < ?)
                    )
                    RETURNING {_JOB_COLUMNS}
                    """,
                    [now, now, job_id, max_attempts, to_naive_utc(stale_cutoff)],
                ).fetchone()

        except duckdb.TransactionException as e:
            # Concurrent writer won the row.
            logger.info("lease_conflict", job_id=job_id, error=str(e))
            return None
        except duckdb.Error as e:
            logger.error("lease_job_failed", job_id=job_id, error=str(e))
            raise StorageError(f"Failed to lease job: {e}") from e

        return _row_to_job(row) if row else None

    def complete_job(
        self, job_id: str, locked_at: datetime, result_status: str, now: datetime
    ) -> bool:
        """Mark a leased job done if the lease is still ours."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    UPDATE jobs
                    SET status = 'done', locked_at = NULL, last_error = NULL,
                        result_status = ?, updated_at = ?
                    WHERE id = ? AND status = 'running' AND locked_at = ?
                    RETURNING id
                    """,
                    [result_status, to_naive_utc(now), job_id, to_naive_utc(locked_at)],
                ).fetchall()
                return bool(rows)

        except duckdb.TransactionException as e:
            logger.warning("complete_job_conflict", job_id=job_id, error=str(e))
            return False
        except duckdb.Error as e:
            logger.error("complete_job_failed", job_id=job_id, error=str(e))
            raise StorageError(f"Failed to complete job: {e}") from e

    def fail_job(
        self,
        job_id: str,
        locked_at: datetime,
        error: str,
        max_attempts: int,
        now: datetime,
    ) -> Optional[JobStatus]:
        """Record a failed attempt; the job errors once attempts are exhausted."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    UPDATE jobs
                    SET status = CASE WHEN attempts >= ? THEN 'error' ELSE 'queued' END,
                        locked_at = NULL, last_error = ?, updated_at = ?
                    WHERE id = ? AND status = 'running' AND locked_at = ?
                    RETURNING status
                    """,
                    [max_attempts, error, to_naive_utc(now), job_id, to_naive_utc(locked_at)],
                ).fetchone()

        except duckdb.TransactionException as e:
            logger.warning("fail_job_conflict", job_id=job_id, error=str(e))
            return None
        except duckdb.Error as e:
            logger.error("fail_job_failed", job_id=job_id, error=str(e))
            raise StorageError(f"Failed to record job failure: {e}") from e

        return JobStatus(row[0]) if row else None

    def expire_job(
        self, job_id: str, stale_cutoff: datetime, error: str, now: datetime
    ) -> bool:
        """Mark a stale running job as error without leasing it."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    UPDATE jobs
                    SET status = 'error', locked_at = NULL, last_error = ?, updated_at = ?
                    WHERE id = ? AND status = 'running' AND locked_at < ?
                    RETURNING id
                    """,
                    [error, to_naive_utc(now), job_id, to_naive_utc(stale_cutoff)],
                ).fetchall()
                return bool(rows)

        except duckdb.TransactionException as e:
            logger.warning("expire_job_conflict", job_id=job_id, error=str(e))
            return False
        except duckdb.Error as e:
            logger.error("expire_job_failed", job_id=job_id, error=str(e))
            raise StorageError(f"Failed to expire job: {e}") from e

    def read_job(self, job_id: str) -> Optional[Job]:
        """Read one job by id."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", [job_id]
                ).fetchone()

        except duckdb.Error as e:
            logger.error("read_job_failed", job_id=job_id, error=str(e))
            raise StorageError(f"Failed to read job: {e}") from e

        return _row_to_job(row) if row else None

    def read_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> list[Job]:
        """Read jobs with optional filters."""
        query = f"SELECT {_JOB_COLUMNS} FROM jobs WHERE 1=1"
        params: list[Any] = []

        if status:
            query += " AND status = ?"
            params.append(status.value)

        if job_type:
            query += " AND job_type = ?"
            params.append(job_type.value)

        query += " ORDER BY created_at ASC, id ASC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()

        except duckdb.Error as e:
            logger.error("read_jobs_failed", error=str(e))
            raise StorageError(f"Failed to read jobs: {e}") from e

        return [_row_to_job(row) for row in rows]

    # =========================================================================
    # Score Store Implementation
    # =========================================================================

    def write_daily_snapshot(self, snapshot: ScoreSnapshot) -> None:
        """Upsert the persisted snapshot for (user_id, date)."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO risk_score_daily (
                        user_id, date, score, zone, percent, top_contributors, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    [
                        snapshot.user_id,
                        snapshot.date,
                        snapshot.score,
                        snapshot.zone.value,
                        snapshot.percent,
                        _contributors_json(snapshot.top_contributors),
                    ],
                )
                logger.debug("daily_snapshot_written", user_id=snapshot.user_id, date=str(snapshot.date))

        except duckdb.Error as e:
            logger.error("write_daily_snapshot_failed", user_id=snapshot.user_id, error=str(e))
            raise StorageError(f"Failed to write daily snapshot: {e}") from e

    def read_daily_snapshots(
        self, user_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[ScoreSnapshot]:
        """Daily snapshots in an inclusive range."""
        query = """
            SELECT user_id, date, score, zone, percent, top_contributors
            FROM risk_score_daily WHERE user_id = ?
        """
        params: list[Any] = [user_id]

        if start:
            query += " AND date >= ?"
            params.append(start)

        if end:
            query += " AND date <= ?"
            params.append(end)

        query += " ORDER BY date ASC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()

        except duckdb.Error as e:
            logger.error("read_daily_snapshots_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read daily snapshots: {e}") from e

        return [
            ScoreSnapshot(
                user_id=row[0],
                date=row[1],
                score=row[2],
                zone=row[3],
                percent=row[4],
                top_contributors=json.loads(row[5]) if row[5] else [],
            )
            for row in rows
        ]

    def write_live_snapshot(self, snapshot: LiveSnapshot) -> None:
        """Upsert the live snapshot for a user."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO risk_score_live (
                        user_id, date, score, zone, percent, top_contributors,
                        forecast, day_risks, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        snapshot.user_id,
                        snapshot.date,
                        snapshot.score,
                        snapshot.zone.value,
                        snapshot.percent,
                        _contributors_json(snapshot.top_contributors),
                        json.dumps(snapshot.forecast),
                        json.dumps([d.model_dump(mode="json") for d in snapshot.day_risks]),
                        to_naive_utc(snapshot.updated_at),
                    ],
                )
                logger.debug("live_snapshot_written", user_id=snapshot.user_id, date=str(snapshot.date))

        except duckdb.Error as e:
            logger.error("write_live_snapshot_failed", user_id=snapshot.user_id, error=str(e))
            raise StorageError(f"Failed to write live snapshot: {e}") from e

    def read_live_snapshot(self, user_id: str) -> Optional[LiveSnapshot]:
        """The live snapshot for a user, or None."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT user_id, date, score, zone, percent, top_contributors,
                           forecast, day_risks, updated_at
                    FROM risk_score_live WHERE user_id = ?
                    """,
                    [user_id],
                ).fetchone()

        except duckdb.Error as e:
            logger.error("read_live_snapshot_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read live snapshot: {e}") from e

        if not row:
            return None

        return LiveSnapshot(
            user_id=row[0],
            date=row[1],
            score=row[2],
            zone=row[3],
            percent=row[4],
            top_contributors=json.loads(row[5]) if row[5] else [],
            forecast=json.loads(row[6]) if row[6] else [],
            day_risks=json.loads(row[7]) if row[7] else [],
            updated_at=row[8],
        )
