"""
Scenario configuration.

A :class:`Configuration` holds the immutable parameters of one benchmark
scenario: the operation mix, the number of worker threads, how long to
run and how often to report.  Construction validates every field, so an
instance that exists is always runnable.

Key Concepts:
- Frozen dataclass as a validated builder (fail fast, before any backend
  is contacted)
- Rates expressed as integer percentages that must sum to exactly 100
- Read/update/delete workloads require a pre-seeded record pool
"""

from __future__ import annotations

from dataclasses import dataclass, fields

from psnbench.exceptions import ConfigurationError

RATE_FIELDS = ("create_rate", "read_rate", "update_rate", "delete_rate", "ping_rate")

NON_NEGATIVE_FIELDS = RATE_FIELDS + (
    "num_threads",
    "max_time_ms",
    "initial_db_size",
    "reporting_interval_ms",
    "reporting_interval_db_space_ms",
)


@dataclass(frozen=True)
class Configuration:
    """
    Parameters of a single benchmark scenario.

    Attributes:
        name: Identifier of the run, used for report file names.
        domain_name: Backend domain in which records are created.
        create_rate: Share of work items (percent) that create a record.
        read_rate: Share of work items that read every known record.
        update_rate: Share of work items that update every known record.
        delete_rate: Share of work items that delete every known record.
        ping_rate: Share of work items that ping the backend.
        num_threads: Number of concurrent worker threads.
        max_time_ms: Wall-clock duration of the run, measured from
            :meth:`~psnbench.statistics.Statistics.start`.
        initial_db_size: Records created during preparation.
        reporting_interval_ms: Interval between throughput report rows.
        reporting_interval_db_space_ms: Interval between storage rows.
        report_db_space: Whether storage consumption is recorded at all.

    Raises:
        ConfigurationError: If any constraint is violated.
    """

    name: str
    domain_name: str
    create_rate: int = 0
    read_rate: int = 0
    update_rate: int = 0
    delete_rate: int = 0
    ping_rate: int = 0
    num_threads: int = 1
    max_time_ms: int = 60_000
    initial_db_size: int = 0
    reporting_interval_ms: int = 1_000
    reporting_interval_db_space_ms: int = 10_000
    report_db_space: bool = False

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        for field_name in NON_NEGATIVE_FIELDS:
            value = getattr(self, field_name)
            # bool is an int subclass; ``True`` is never a valid count
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{field_name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{field_name} must be zero or positive, got {value}")

        for field_name in RATE_FIELDS:
            if getattr(self, field_name) > 100:
                raise ConfigurationError(f"{field_name} must not exceed 100")

        if sum(self.rates) != 100:
            raise ConfigurationError(
                f"All rates combined must add up to exactly 100, got {sum(self.rates)}"
            )

        for field_name in ("name", "domain_name"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"{field_name} must be a non-empty string")

        if self.initial_db_size == 0 and (
            self.read_rate > 0 or self.update_rate > 0 or self.delete_rate > 0
        ):
            raise ConfigurationError(
                "initial_db_size must be positive when read, update or delete rates are set"
            )

        if self.reporting_interval_ms <= 0:
            raise ConfigurationError("reporting_interval_ms must be greater than zero")
        if self.reporting_interval_db_space_ms <= 0:
            raise ConfigurationError("reporting_interval_db_space_ms must be greater than zero")

    @property
    def rates(self) -> tuple[int, int, int, int, int]:
        """The five rates in draw order: create, read, update, delete, ping."""
        return (
            self.create_rate,
            self.read_rate,
            self.update_rate,
            self.delete_rate,
            self.ping_rate,
        )

    def to_dict(self) -> dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
