"""Deterministic replay of ranked match history from a reset baseline."""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from domain.common import MatchRecord, ParticipantRecord, SkipReason
from domain.errors import InvalidDocument, RatingError, StoreUnavailable, TransactionConflict
from domain.ledger import write_settlement
from domain.outcome import eligibility_issues, extract_outcome
from domain.ratings.elo.calculator import EloParameters, EloUpdate, RankedEloCalculator
from domain.ratings.elo.config import DEFAULT_ALGO_VERSION
from repositories.match_repository import (
    PLAYERS,
    RATING_FIELD,
    fetch_match_documents,
    fetch_participants,
    fetch_player_ids,
    format_timestamp,
    parse_match_document,
    utc_now,
)
from repositories.store import DocumentStore, Transaction, WriteOperation

logger = logging.getLogger(__name__)

_EARLIEST = datetime.min.replace(tzinfo=UTC)


class RebuildMode(str, Enum):
    DRY_RUN = "dry-run"
    COMMIT = "commit"
    VALIDATE_ONLY = "validate-only"


@dataclass(frozen=True)
class MatchHistoryEntry:
    match: MatchRecord
    participants: tuple[ParticipantRecord, ...] = ()


@dataclass(frozen=True)
class MatchRebuildRecord:
    match_id: str
    ended_at: datetime | None
    update: EloUpdate

    @property
    def deltas(self) -> dict[str, int]:
        return dict(self.update.delta_by_player)

    @property
    def after_ratings(self) -> dict[str, int]:
        return dict(self.update.after_by_player)


@dataclass(frozen=True)
class RatingMovement:
    player_id: str
    rating: int
    movement: int


@dataclass
class ReplayResult:
    final_ratings: dict[str, int]
    records: list[MatchRebuildRecord] = field(default_factory=list)
    eligible_matches: int = 0
    skipped_matches: int = 0
    failed_matches: int = 0
    skip_reasons: Counter[str] = field(default_factory=Counter)


@dataclass(frozen=True)
class RebuildSummary:
    mode: RebuildMode
    algo_version: str
    default_rating: int
    total_matches: int
    processed_matches: int
    skipped_matches: int
    failed_matches: int
    committed_matches: int
    skip_reasons: dict[str, int]
    final_ratings: dict[str, int]
    records: tuple[MatchRebuildRecord, ...]
    sample_size: int = 3

    @property
    def tracked_players(self) -> int:
        return len(self.final_ratings)

    def samples(self) -> list[MatchRebuildRecord]:
        return list(self.records[: self.sample_size])

    def top_movements(self, n: int = 10) -> list[RatingMovement]:
        """Largest absolute moves away from the baseline rating."""
        movements = [
            RatingMovement(player_id, rating, rating - self.default_rating)
            for player_id, rating in self.final_ratings.items()
        ]
        movements.sort(key=lambda movement: (-abs(movement.movement), movement.player_id))
        return movements[:n]


def history_sort_key(match: MatchRecord) -> tuple[bool, datetime, datetime, str]:
    return (
        match.ended_at is None,
        match.ended_at or _EARLIEST,
        match.created_at or _EARLIEST,
        match.match_id,
    )


def order_history(entries: Iterable[MatchHistoryEntry]) -> list[MatchHistoryEntry]:
    """Ascending endedAt, then createdAt, then matchId; no endedAt sorts last."""
    return sorted(entries, key=lambda entry: history_sort_key(entry.match))


def replay_history(
    entries: Iterable[MatchHistoryEntry],
    *,
    params: EloParameters | None = None,
    initial_ratings: Mapping[str, int] | None = None,
    limit: int | None = None,
    validate_only: bool = False,
) -> ReplayResult:
    """Left-fold ordered matches through the Elo calculator.

    ``limit`` caps the number of eligible matches consumed. Ineligible
    matches are skipped and counted by their first reason.
    """
    if limit is not None and limit <= 0:
        raise ValueError("limit must be greater than 0")

    calculator = RankedEloCalculator(params or EloParameters(), initial_ratings=initial_ratings)
    result = ReplayResult(final_ratings={})

    for entry in order_history(entries):
        if limit is not None and result.eligible_matches >= limit:
            break

        match = entry.match
        outcome = extract_outcome(match, entry.participants)
        issues = eligibility_issues(match, outcome)
        if issues:
            result.skipped_matches += 1
            result.skip_reasons[issues[0].value] += 1
            logger.warning(
                "[skip] match_id=%s reasons=%s",
                match.match_id,
                ",".join(issue.value for issue in issues),
            )
            continue

        result.eligible_matches += 1
        if validate_only:
            continue

        try:
            update = calculator.process_outcome(outcome)
        except (RatingError, ValueError) as exc:
            result.eligible_matches -= 1
            result.failed_matches += 1
            logger.error("[fail] match_id=%s: %s", match.match_id, exc)
            continue

        result.records.append(MatchRebuildRecord(match.match_id, match.ended_at, update))

    result.final_ratings = calculator.ratings()
    return result


class HistoryRebuilder:
    """Rebuilds every rating from the full ordered match history.

    The settlement guard is ignored: every eligible match is recomputed from
    the baseline and, in commit mode, overwritten match by match.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        params: EloParameters | None = None,
        algo_version: str = DEFAULT_ALGO_VERSION,
        ranked_only: bool = False,
        sample_size: int = 3,
        clock: Callable[[], datetime] = utc_now,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.params = params or EloParameters()
        self.algo_version = algo_version
        self.ranked_only = ranked_only
        self.sample_size = sample_size
        self.clock = clock
        self.echo = echo

    def load_history(
        self,
        *,
        from_date: datetime | None = None,
    ) -> tuple[list[MatchHistoryEntry], list[str]]:
        """Return parsed history entries and the ids of matches with invalid documents."""
        entries: list[MatchHistoryEntry] = []
        invalid_match_ids: list[str] = []

        for document in fetch_match_documents(self.store, ranked_only=self.ranked_only):
            try:
                match = parse_match_document(document)
                if from_date is not None and (match.ended_at is None or match.ended_at < from_date):
                    continue
                participants = fetch_participants(self.store, match.match_id)
            except InvalidDocument as exc:
                invalid_match_ids.append(document.id)
                logger.warning("[skip] match_id=%s reasons=%s: %s", document.id, SkipReason.INVALID_DOCUMENT.value, exc)
                continue
            entries.append(MatchHistoryEntry(match=match, participants=tuple(participants)))

        return order_history(entries), invalid_match_ids

    def known_player_ids(self, entries: Sequence[MatchHistoryEntry]) -> list[str]:
        player_ids = set(fetch_player_ids(self.store))
        for entry in entries:
            player_ids.update(p.player_id for p in entry.participants if p.team is not None)
        return sorted(player_ids)

    def rebuild(
        self,
        *,
        mode: RebuildMode = RebuildMode.DRY_RUN,
        limit: int | None = None,
        from_date: datetime | None = None,
        initial_ratings: Mapping[str, int] | None = None,
    ) -> RebuildSummary:
        entries, invalid_match_ids = self.load_history(from_date=from_date)
        self._echo(
            f"loaded_matches={len(entries) + len(invalid_match_ids)} "
            f"invalid_matches={len(invalid_match_ids)} mode={mode.value}"
        )

        seeds = {player_id: self.params.default_rating for player_id in self.known_player_ids(entries)}
        if initial_ratings:
            seeds.update(initial_ratings)

        replay = replay_history(
            entries,
            params=self.params,
            initial_ratings=seeds,
            limit=limit,
            validate_only=mode is RebuildMode.VALIDATE_ONLY,
        )

        skip_reasons = Counter(replay.skip_reasons)
        if invalid_match_ids:
            skip_reasons[SkipReason.INVALID_DOCUMENT.value] += len(invalid_match_ids)

        committed = 0
        failed = replay.failed_matches
        if mode is RebuildMode.COMMIT:
            committed, commit_failures = self._commit(entries, replay)
            failed += commit_failures

        return RebuildSummary(
            mode=mode,
            algo_version=self.algo_version,
            default_rating=self.params.default_rating,
            total_matches=len(entries) + len(invalid_match_ids),
            processed_matches=replay.eligible_matches,
            skipped_matches=replay.skipped_matches + len(invalid_match_ids),
            failed_matches=failed,
            committed_matches=committed,
            skip_reasons=dict(sorted(skip_reasons.items())),
            final_ratings=replay.final_ratings,
            records=tuple(replay.records),
            sample_size=self.sample_size,
        )

    def _commit(self, entries: Sequence[MatchHistoryEntry], replay: ReplayResult) -> tuple[int, int]:
        entries_by_id = {entry.match.match_id: entry for entry in entries}
        rebuilt_at = self.clock()
        committed = 0
        failures = 0

        for index, record in enumerate(replay.records, start=1):
            entry = entries_by_id[record.match_id]
            try:
                self.store.run_atomic_transaction(self._match_writer(entry, record, rebuilt_at))
            except StoreUnavailable:
                raise
            except (TransactionConflict, InvalidDocument, LookupError) as exc:
                failures += 1
                logger.error("[fail] match_id=%s commit failed: %s", record.match_id, exc)
                continue
            committed += 1
            if index % 1_000 == 0:
                self._echo(f"committed_matches={index}/{len(replay.records)}")

        timestamp = format_timestamp(rebuilt_at)
        self.store.batch_write(
            [
                WriteOperation.set(PLAYERS, player_id, {RATING_FIELD: rating, "ratingUpdatedAt": timestamp})
                for player_id, rating in sorted(replay.final_ratings.items())
            ]
        )
        return committed, failures

    def _match_writer(
        self,
        entry: MatchHistoryEntry,
        record: MatchRebuildRecord,
        rebuilt_at: datetime,
    ) -> Callable[[Transaction], None]:
        def write(tx: Transaction) -> None:
            write_settlement(
                tx,
                match=entry.match,
                participants=entry.participants,
                update=record.update,
                algo_version=self.algo_version,
                settled_at=rebuilt_at,
                write_player_ratings=False,
                extra_match_fields={
                    "eloDeltaByPlayerId": record.deltas,
                    "eloAfterByPlayerId": record.after_ratings,
                    "ratingRebuiltAt": format_timestamp(rebuilt_at),
                },
            )

        return write

    def _echo(self, message: str) -> None:
        if self.echo is not None:
            self.echo(message)


def render_summary_lines(summary: RebuildSummary, *, top_n: int = 10) -> list[str]:
    """Operator-facing summary of one rebuild run."""
    lines = [
        "--- Summary ---",
        f"mode={summary.mode.value} algo_version={summary.algo_version}",
        f"Matches processed: {summary.processed_matches}/{summary.total_matches}",
        f"Matches skipped: {summary.skipped_matches}",
        f"Matches failed: {summary.failed_matches}",
        f"Players tracked: {summary.tracked_players}",
    ]
    if summary.mode is RebuildMode.COMMIT:
        lines.append(f"Matches committed: {summary.committed_matches}")

    if summary.skip_reasons:
        lines.append("Skip reasons:")
        lines.extend(f"- {reason}: {count}" for reason, count in summary.skip_reasons.items())

    if summary.mode is RebuildMode.VALIDATE_ONLY:
        lines.append("Validation only complete (no writes, no calculations).")
        return lines

    lines.append(f"Top {top_n} absolute variations:")
    lines.extend(
        f"- {movement.player_id}: {movement.rating} (delta {movement.movement:+d})"
        for movement in summary.top_movements(top_n)
    )

    lines.append("Sample matches:")
    for record in summary.samples():
        lines.append(f"- {record.match_id}")
        lines.append(f"  deltas: {json.dumps(record.deltas, sort_keys=True)}")
        lines.append(f"  after: {json.dumps(record.after_ratings, sort_keys=True)}")

    if summary.mode is RebuildMode.DRY_RUN:
        lines.append("Dry run complete (no writes).")
        return lines

    # Player ratings are written from the full replay, so they include
    # the deltas of matches whose own documents failed to commit.
    uncommitted = summary.processed_matches - summary.committed_matches
    if uncommitted > 0:
        lines.append(
            f"Warning: {uncommitted} match commit(s) failed; player ratings include their deltas. "
            "Re-run with --commit to realign match documents."
        )
    lines.append("Commit complete (writes applied).")
    return lines


__all__ = [
    "HistoryRebuilder",
    "MatchHistoryEntry",
    "MatchRebuildRecord",
    "RatingMovement",
    "RebuildMode",
    "RebuildSummary",
    "ReplayResult",
    "history_sort_key",
    "order_history",
    "render_summary_lines",
    "replay_history",
]
