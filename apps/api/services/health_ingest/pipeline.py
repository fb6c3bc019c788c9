"""
Health ingest pipeline (per-request orchestrator).

One call ingests one webhook payload:

    resolve envelopes -> classify each envelope -> fan out its independent
    units of work (plus one raw capture of the envelope) -> join ->
    derived aggregates -> counts

Envelopes are processed in payload order. Within an envelope, each unit (one
data point, one blood pressure reading, or one merged sleep night) runs on a
bounded thread pool in its own database session and commits on its own, so a
bad point never takes its siblings down with it. Counts are folded from the
units' return values; nothing mutable is shared between threads.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from functools import partial
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from core.config import settings
from services.health_ingest.biomarkers import SOURCE_HEALTH_AUTO_EXPORT, build_samples
from services.health_ingest.classifier import Category, classify
from services.health_ingest.derived import DerivedAggregateUpdater, DerivedResult
from services.health_ingest.errors import FieldMissing
from services.health_ingest.metric_types import BiomarkerKind, is_kind_routed
from services.health_ingest.payload_format import MetricEnvelope, resolve_envelopes
from services.health_ingest.raw_events import RawEvent, build_raw_events
from services.health_ingest.repository import IngestionRepository
from services.health_ingest.sleep_nights import SleepNight, SleepNightAggregator
from services.health_ingest.workouts import normalize_workout, record_workout

logger = logging.getLogger(__name__)

UnitFn = Callable[[IngestionRepository], "IngestTally"]


@dataclass(frozen=True)
class IngestTally:
    """What one unit of work (or a fold of many) wrote."""
    biomarkers: int = 0
    sleep_sessions: int = 0
    workout_sessions: int = 0
    kinds: FrozenSet[str] = field(default_factory=frozenset)
    dates: FrozenSet[date] = field(default_factory=frozenset)
    dropped: int = 0
    raw_events: int = 0
    raw_duplicates: int = 0

    def __add__(self, other: "IngestTally") -> "IngestTally":
        return IngestTally(
            biomarkers=self.biomarkers + other.biomarkers,
            sleep_sessions=self.sleep_sessions + other.sleep_sessions,
            workout_sessions=self.workout_sessions + other.workout_sessions,
            kinds=self.kinds | other.kinds,
            dates=self.dates | other.dates,
            dropped=self.dropped + other.dropped,
            raw_events=self.raw_events + other.raw_events,
            raw_duplicates=self.raw_duplicates + other.raw_duplicates,
        )


@dataclass(frozen=True)
class IngestResult:
    biomarkers_count: int
    sleep_sessions_count: int
    workout_sessions_count: int
    envelopes: int = 0
    skipped_envelopes: int = 0
    dropped_points: int = 0
    raw_events: int = 0
    raw_duplicates: int = 0
    derived: DerivedResult = field(default_factory=DerivedResult)

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "biomarkersCount": self.biomarkers_count,
            "sleepSessionsCount": self.sleep_sessions_count,
            "workoutSessionsCount": self.workout_sessions_count,
        }


class HealthIngestPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        repository_factory: Callable[[Session], IngestionRepository] = IngestionRepository,
        max_workers: Optional[int] = None,
        sleep_aggregator: Optional[SleepNightAggregator] = None,
        derived_updater: Optional[DerivedAggregateUpdater] = None,
        allowlist: Optional[Iterable[str]] = None,
        blocklist: Optional[Iterable[str]] = None,
    ):
        self.session_factory = session_factory
        self.repository_factory = repository_factory
        self.max_workers = max_workers or settings.INGEST_MAX_WORKERS
        self.sleep_aggregator = sleep_aggregator or SleepNightAggregator()
        self.derived_updater = derived_updater or DerivedAggregateUpdater(
            session_factory,
            repository_factory,
            lookback_days=settings.INGEST_BODY_FAT_LOOKBACK_DAYS,
        )
        self.allowlist = list(settings.routing_allowlist if allowlist is None else allowlist)
        self.blocklist = list(settings.routing_blocklist if blocklist is None else blocklist)

    # --- Entry points ---

    def ingest_payload(
        self,
        athlete_id,
        payload: Any,
        raw_body: Optional[str] = None,
        source: str = SOURCE_HEALTH_AUTO_EXPORT,
    ) -> IngestResult:
        """
        Ingest one Health Auto Export payload.

        Raises:
            PayloadFormatError: no metric list in the payload.
        """
        envelopes = resolve_envelopes(payload, raw_body, settings.INGEST_DIAGNOSTIC_BODY_LIMIT)
        logger.info(f"Ingesting {len(envelopes)} metric group(s) for athlete {athlete_id} from {source}")
        return self.ingest_envelopes(athlete_id, envelopes, source)

    def ingest_envelopes(self, athlete_id, envelopes: List[MetricEnvelope], source: str) -> IngestResult:
        total = IngestTally()
        skipped = 0
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ingest") as pool:
            for envelope in envelopes:
                tally, recognized = self._ingest_envelope(pool, athlete_id, envelope, source)
                total = total + tally
                skipped += 0 if recognized else 1

        derived = self.derived_updater.run(athlete_id, total.kinds, total.dates)

        result = IngestResult(
            biomarkers_count=total.biomarkers,
            sleep_sessions_count=total.sleep_sessions,
            workout_sessions_count=total.workout_sessions,
            envelopes=len(envelopes),
            skipped_envelopes=skipped,
            dropped_points=total.dropped,
            raw_events=total.raw_events,
            raw_duplicates=total.raw_duplicates,
            derived=derived,
        )
        logger.info(
            f"Ingest complete for athlete {athlete_id}: "
            f"{result.biomarkers_count} biomarkers, {result.sleep_sessions_count} sleep nights, "
            f"{result.workout_sessions_count} workouts "
            f"({skipped} skipped groups, {total.dropped} dropped points, "
            f"{total.raw_events} raw events, {total.raw_duplicates} raw duplicates)"
        )
        return result

    # --- Per envelope ---

    def _ingest_envelope(
        self,
        pool: ThreadPoolExecutor,
        athlete_id,
        envelope: MetricEnvelope,
        source: str,
    ) -> Tuple[IngestTally, bool]:
        classification = classify(envelope, self.allowlist, self.blocklist)
        envelope = classification.envelope
        # Captured whether or not the envelope is routed.
        raw_events = build_raw_events(athlete_id, envelope)
        units: List[Tuple[UnitFn, Optional[Callable[[], None]]]] = []
        if raw_events:
            units.append((partial(self._raw_unit, athlete_id, raw_events, source), None))
        presorted = IngestTally()
        recognized = True

        if classification.category == Category.WORKOUT:
            for point in envelope.data:
                units.append((partial(self._workout_unit, athlete_id, point, envelope.name, source), None))
        elif classification.category == Category.SLEEP:
            nights, dropped = self.sleep_aggregator.aggregate(envelope.data)
            presorted = IngestTally(dropped=dropped)
            for night in nights:
                units.append((
                    partial(self._sleep_unit, athlete_id, night, source),
                    partial(self.sleep_aggregator.announce, athlete_id, night.night_date),
                ))
        elif classification.category == Category.SCALAR:
            envelope_unit = envelope.raw.get("units") or envelope.raw.get("unit")
            for point in envelope.data:
                units.append((
                    partial(self._biomarker_unit, athlete_id, point, classification.kind, envelope_unit, source),
                    None,
                ))
        else:
            recognized = False

        futures = [pool.submit(self._run_unit, fn, on_commit) for fn, on_commit in units]
        tally = presorted
        for future in futures:
            tally = tally + future.result()
        logger.debug(
            f"Envelope '{envelope.name}' ({classification.category.value}): "
            f"{len(units)} unit(s), {tally.dropped} dropped, {tally.raw_duplicates} raw duplicates"
        )
        return tally, recognized

    def _run_unit(self, fn: UnitFn, on_commit: Optional[Callable[[], None]] = None) -> IngestTally:
        db = self.session_factory()
        try:
            tally = fn(self.repository_factory(db))
            db.commit()
        except FieldMissing as e:
            db.rollback()
            logger.debug(f"Dropping data point: {e} (keys={e.point_keys})")
            return IngestTally(dropped=1)
        except Exception as e:
            db.rollback()
            logger.error(f"Ingest unit failed: {e}", exc_info=True)
            return IngestTally(dropped=1)
        finally:
            db.close()

        if on_commit is not None:
            on_commit()
        return tally

    # --- Units of work ---

    def _raw_unit(self, athlete_id, events: List[RawEvent], source: str, repo: IngestionRepository) -> IngestTally:
        written = 0
        for event in events:
            if repo.insert_raw_event(
                athlete_id, event.event_type, event.recorded_at, event.payload, source, event.idempotency_key
            ):
                written += 1
        return IngestTally(raw_events=written, raw_duplicates=len(events) - written)

    def _workout_unit(self, athlete_id, point, envelope_name: str, source: str, repo: IngestionRepository) -> IngestTally:
        workout = normalize_workout(point, envelope_name)
        record_workout(repo, athlete_id, workout, source)
        return IngestTally(workout_sessions=1)

    def _sleep_unit(self, athlete_id, night: SleepNight, source: str, repo: IngestionRepository) -> IngestTally:
        self.sleep_aggregator.store(repo, athlete_id, night, source)
        return IngestTally(sleep_sessions=1)

    def _biomarker_unit(
        self,
        athlete_id,
        point,
        kind: BiomarkerKind,
        envelope_unit: Optional[str],
        source: str,
        repo: IngestionRepository,
    ) -> IngestTally:
        samples = [
            s for s in build_samples(point, kind, envelope_unit)
            if is_kind_routed(s.kind, self.allowlist, self.blocklist)
        ]
        for sample in samples:
            repo.upsert_biomarker(athlete_id, sample.kind.value, sample.value, sample.unit, sample.recorded_at, source)
        return IngestTally(
            biomarkers=len(samples),
            kinds=frozenset(s.kind.value for s in samples),
            dates=frozenset(s.recorded_at.date() for s in samples),
        )
