"""
Abstract storage interface for the riskcast core.

All coordination state lives in the shared store: the core keeps nothing in
memory between dispatcher ticks. This module defines the contract every
backend must honour so the dispatcher, worker, evaluator and scorer never
touch SQL directly.

Storage areas:
- Metric Store: per-user, per-day source signals (read-mostly)
- Location records: per-user, per-day timezone observations
- Definition Catalog: definitions, settings and severity mappings
- Scoring configuration: decay weights and gauge thresholds
- Event Store: fired events, unique per (user, type, source, day)
- Job Queue: leasable work rows mutated only by conditional updates
- Score Store: daily snapshots and the live forecast snapshot
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Optional

from riskcast.models.definitions import Definition, MetricReference, Setting, SeverityMapping
from riskcast.models.enums import EventSource, JobStatus, JobType, Severity, Zone
from riskcast.models.events import Event
from riskcast.models.jobs import Job
from riskcast.models.scores import DecayWeights, GaugeThreshold, LiveSnapshot, ScoreSnapshot


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Implementations must make every job mutation a conditional update keyed
    on ``status``/``locked_at`` and every event or snapshot write an upsert
    by natural key, so that concurrent writers converge rather than conflict.
    All failures surface as ``riskcast.errors.StorageError``.
    """

    # =========================================================================
    # Metric Store
    # =========================================================================

    @abstractmethod
    def read_metric_value(
        self, user_id: str, metric: MetricReference, day: date
    ) -> Optional[Any]:
        """
        Read one user's value for one metric on one day.

        Args:
            user_id: Owner of the metric row
            metric: Table and column to read
            day: Local date of the row

        Returns:
            The raw value (number, ordinal string or ISO timestamp), or None
            when no row or a null value exists

        Raises:
            InvalidMetricReference: If the table or column is not a safe identifier
            StorageError: If the read fails
        """

    @abstractmethod
    def read_metric_history(
        self, user_id: str, metric: MetricReference, start: date, end: date
    ) -> list[Any]:
        """
        Read non-null values for ``start <= date <= end``, oldest first.

        Raises:
            InvalidMetricReference: If the table or column is not a safe identifier
            StorageError: If the read fails
        """

    @abstractmethod
    def write_metric_value(
        self, user_id: str, metric: MetricReference, day: date, value: Any
    ) -> None:
        """Upsert one per-day metric value, creating the table on first use."""

    # =========================================================================
    # Location records
    # =========================================================================

    @abstractmethod
    def write_location(self, user_id: str, day: date, timezone: str) -> None:
        """Upsert the timezone observed for a user on a day."""

    @abstractmethod
    def resolve_timezone(self, user_id: str, approx_date: date) -> Optional[str]:
        """
        Resolve a user's IANA timezone near ``approx_date``.

        Tries the day before, the day itself and the day after, in that order,
        returning the most recently updated record of the first day that has
        one. Returns None when no record exists in that range.
        """

    @abstractmethod
    def list_location_users(self, since: date) -> list[str]:
        """Users with a location record on or after ``since``."""

    # =========================================================================
    # Definition Catalog
    # =========================================================================

    @abstractmethod
    def write_definition(self, definition: Definition) -> None:
        """Upsert a definition keyed on (user_id, label)."""

    @abstractmethod
    def read_definitions(self, user_id: str) -> list[Definition]:
        """All definitions a user owns, ordered by label."""

    @abstractmethod
    def list_definition_users(self) -> list[str]:
        """Users owning at least one definition."""

    @abstractmethod
    def write_setting(self, setting: Setting) -> None:
        """Upsert a per-user override keyed on (user_id, label)."""

    @abstractmethod
    def read_settings(self, user_id: str) -> dict[str, Setting]:
        """Settings for a user keyed by definition label."""

    @abstractmethod
    def write_severity_mapping(self, mapping: SeverityMapping) -> None:
        """Upsert the severity attached to a definition label."""

    @abstractmethod
    def read_severity_mappings(self, user_id: str) -> dict[str, Severity]:
        """Severities for a user keyed by definition label."""

    # =========================================================================
    # Scoring configuration
    # =========================================================================

    @abstractmethod
    def write_decay_weights(self, user_id: str, weights: DecayWeights) -> None:
        """Upsert one severity's decay curve for a user."""

    @abstractmethod
    def read_decay_weights(self, user_id: str) -> dict[Severity, DecayWeights]:
        """Decay curves for a user keyed by severity. Empty when unconfigured."""

    @abstractmethod
    def write_gauge_threshold(self, user_id: str, threshold: GaugeThreshold) -> None:
        """Upsert one zone's minimum score for a user."""

    @abstractmethod
    def read_gauge_thresholds(self, user_id: str) -> dict[Zone, float]:
        """Zone minimums for a user. Empty when unconfigured."""

    @abstractmethod
    def list_scoring_users(self) -> list[str]:
        """Users with decay weights configured."""

    # =========================================================================
    # Event Store
    # =========================================================================

    @abstractmethod
    def insert_event(self, event: Event) -> bool:
        """
        Insert an event unless one already exists for its natural key.

        Args:
            event: Event to insert

        Returns:
            True if a row was inserted, False if (user_id, type, source,
            occurred_date) was already present

        Raises:
            StorageError: If the write fails for any other reason
        """

    @abstractmethod
    def append_event_note(
        self,
        user_id: str,
        event_type: str,
        source: EventSource,
        day: date,
        note: str,
        contributor: Optional[str] = None,
    ) -> bool:
        """
        Append a reason line and contributor label to an existing event.

        Appending a note already present, or a contributor already listed, is
        a no-op so re-evaluation stays idempotent.

        Returns:
            True if the event exists (whether or not anything changed)
        """

    @abstractmethod
    def read_events(self, user_id: str, start: date, end: date) -> list[Event]:
        """Events with ``start <= occurred_date < end``, oldest first."""

    # =========================================================================
    # Job Queue
    # =========================================================================

    @abstractmethod
    def enqueue_job(self, job: Job) -> bool:
        """
        Insert a queued job.

        Returns:
            True if inserted, False if (job_type, user_id, target_date) already
            exists (duplicate enqueue is a no-op)
        """

    @abstractmethod
    def requeue_job(
        self,
        job_type: JobType,
        user_id: str,
        target_date: date,
        timezone: Optional[str],
        now: datetime,
        finished_before: Optional[datetime] = None,
    ) -> bool:
        """
        Ensure a job is queued, resetting a completed one.

        Inserts the job if absent. A ``done`` row is reset to ``queued`` with
        zero attempts. ``queued`` and ``running`` rows are left alone, and an
        ``error`` row stays terminal. With ``finished_before`` set, only rows
        last updated before that instant are reset.

        Returns:
            True if a row was inserted or reset
        """

    @abstractmethod
    def select_jobs(
        self,
        now: datetime,
        limit: int,
        max_attempts: int,
        stale_cutoffs: dict[JobType, datetime],
        job_types: Optional[list[JobType]] = None,
    ) -> list[Job]:
        """
        Pick candidate jobs, oldest-created first.

        Selects ``queued`` jobs with ``attempts < max_attempts`` and ``running``
        jobs whose ``locked_at`` is older than their type's stale cutoff.
        Selection takes no lease.
        """

    @abstractmethod
    def lease_job(
        self, job_id: str, now: datetime, max_attempts: int, stale_cutoff: datetime
    ) -> Optional[Job]:
        """
        Atomically take the lease on a job.

        One conditional update sets ``status='running'``, ``locked_at=now`` and
        increments ``attempts`` where the job is ``queued`` with attempts left,
        or ``running`` with ``locked_at < stale_cutoff``.

        Returns:
            The leased job, or None when zero rows were affected (another
            worker holds the lease)
        """

    @abstractmethod
    def complete_job(
        self, job_id: str, locked_at: datetime, result_status: str, now: datetime
    ) -> bool:
        """
        Mark a leased job done, provided the lease is still ours.

        Returns:
            False when the lease was lost (reclaimed by another worker)
        """

    @abstractmethod
    def fail_job(
        self,
        job_id: str,
        locked_at: datetime,
        error: str,
        max_attempts: int,
        now: datetime,
    ) -> Optional[JobStatus]:
        """
        Record a failed attempt on a leased job.

        The job becomes ``error`` when ``attempts >= max_attempts``, otherwise
        ``queued`` again.

        Returns:
            The new status, or None when the lease was lost
        """

    @abstractmethod
    def expire_job(
        self, job_id: str, stale_cutoff: datetime, error: str, now: datetime
    ) -> bool:
        """Mark a stale ``running`` job ``error`` without leasing it."""

    @abstractmethod
    def read_job(self, job_id: str) -> Optional[Job]:
        """Read one job by id."""

    @abstractmethod
    def read_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> list[Job]:
        """Read jobs, oldest first, with optional filters."""

    # =========================================================================
    # Score Store
    # =========================================================================

    @abstractmethod
    def write_daily_snapshot(self, snapshot: ScoreSnapshot) -> None:
        """Upsert the persisted snapshot for (user_id, date)."""

    @abstractmethod
    def read_daily_snapshots(
        self, user_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[ScoreSnapshot]:
        """Daily snapshots for ``start <= date <= end``, oldest first."""

    @abstractmethod
    def write_live_snapshot(self, snapshot: LiveSnapshot) -> None:
        """Upsert the single live snapshot for a user."""

    @abstractmethod
    def read_live_snapshot(self, user_id: str) -> Optional[LiveSnapshot]:
        """The live snapshot for a user, or None."""
