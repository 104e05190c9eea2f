"""At-most-once settlement of ranked Elo for a single match."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from domain.common import MatchRecord, ParticipantRecord, SkipReason
from domain.errors import IneligibleMatch, MatchNotFound
from domain.outcome import eligibility_issues, extract_outcome
from domain.ratings.elo.calculator import (
    EloParameters,
    EloUpdate,
    compute_update,
    round_half_away_from_zero,
)
from domain.ratings.elo.config import DEFAULT_ALGO_VERSION
from repositories.match_repository import (
    MATCHES,
    PLAYERS,
    RATING_FIELD,
    SETTLED_FIELD,
    format_timestamp,
    parse_match_document,
    parse_participants,
    parse_player_rating,
    parse_recorded_deltas,
    participants_collection,
    utc_now,
)
from repositories.store import DocumentStore, Transaction

logger = logging.getLogger(__name__)

INELIGIBLE_REASONS = frozenset(
    {
        SkipReason.MISSING_ENDED_AT,
        SkipReason.UNRESOLVED_WINNER,
        SkipReason.EMPTY_TEAM_A,
        SkipReason.EMPTY_TEAM_B,
        SkipReason.DUPLICATE_PLAYER,
    }
)


@dataclass(frozen=True)
class SettlementApplied:
    match_id: str
    update: EloUpdate
    algo_version: str
    forced: bool = False

    @property
    def applied_deltas(self) -> dict[str, int]:
        return dict(self.update.delta_by_player)

    @property
    def new_ratings(self) -> dict[str, int]:
        return dict(self.update.after_by_player)


@dataclass(frozen=True)
class SettlementSkipped:
    match_id: str
    reasons: tuple[SkipReason, ...]

    @property
    def is_ineligible(self) -> bool:
        return any(reason in INELIGIBLE_REASONS for reason in self.reasons)


SettlementResult = SettlementApplied | SettlementSkipped


def rating_summary(update: EloUpdate) -> dict[str, int]:
    return {
        "teamAAvgBefore": round_half_away_from_zero(update.team_a_avg_before or 0.0),
        "teamBAvgBefore": round_half_away_from_zero(update.team_b_avg_before or 0.0),
        "delta": update.team_a_delta,
    }


def write_settlement(
    tx: Transaction,
    *,
    match: MatchRecord,
    participants: Sequence[ParticipantRecord],
    update: EloUpdate,
    algo_version: str,
    settled_at: datetime,
    write_player_ratings: bool = True,
    extra_match_fields: Mapping[str, Any] | None = None,
) -> None:
    """Stage every write of one settlement on ``tx``."""
    changes = {change.player_id: change for change in update.changes()}

    if write_player_ratings:
        for change in changes.values():
            tx.set(PLAYERS, change.player_id, {RATING_FIELD: change.after}, merge=True)

    collection = participants_collection(match.match_id)
    for participant in participants:
        change = changes.get(participant.player_id)
        if change is None or participant.team is not change.team:
            continue
        tx.set(
            collection,
            participant.doc_id,
            {RATING_FIELD: {"before": change.before, "delta": change.delta, "after": change.after}},
            merge=True,
        )

    match_patch: dict[str, Any] = {
        SETTLED_FIELD: True,
        "ratingAlgoVersion": algo_version,
        "ratingSummary": rating_summary(update),
        "settledAt": format_timestamp(settled_at),
    }
    if match.winner_team is None and update.winner is not None:
        match_patch["winnerTeam"] = update.winner.value
    if extra_match_fields:
        match_patch.update(extra_match_fields)
    tx.update(MATCHES, match.match_id, match_patch)


class SettlementLedger:
    """Applies the Elo update of a finished match exactly once.

    The whole read-compute-write unit runs inside one store transaction, so
    concurrent or retried attempts serialise and later ones observe
    ``eloCommitted`` and skip.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        params: EloParameters | None = None,
        algo_version: str = DEFAULT_ALGO_VERSION,
        ranked_only: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.params = params or EloParameters()
        self.algo_version = algo_version
        self.ranked_only = ranked_only
        self.clock = clock

    def settle(self, match_id: str, *, force: bool = False, strict: bool = False) -> SettlementResult:
        """Settle one match.

        Returns ``SettlementSkipped`` for already-settled, unranked or
        ineligible matches; with ``strict`` an ineligible match raises
        ``IneligibleMatch`` instead. Store and document errors propagate.
        """
        if not match_id:
            raise ValueError("match_id is required")

        result = self.store.run_atomic_transaction(
            lambda tx: self._settle_in_transaction(tx, match_id, force=force)
        )

        if isinstance(result, SettlementSkipped):
            labels = ",".join(reason.value for reason in result.reasons)
            logger.info("settlement skipped match_id=%s reasons=%s", match_id, labels)
            if strict and result.is_ineligible:
                raise IneligibleMatch(match_id, result.reasons)
            return result

        logger.info(
            "settled match_id=%s team_a_delta=%d players=%d algo_version=%s forced=%s",
            match_id,
            result.update.team_a_delta,
            len(result.update.delta_by_player),
            result.algo_version,
            result.forced,
        )
        return result

    def _settle_in_transaction(self, tx: Transaction, match_id: str, *, force: bool) -> SettlementResult:
        document = tx.get(MATCHES, match_id)
        if document is None:
            raise MatchNotFound(match_id)
        match = parse_match_document(document)

        if match.settled and not force:
            return SettlementSkipped(match_id, (SkipReason.ALREADY_SETTLED,))
        if match.settled:
            logger.warning("forcing re-settlement of match_id=%s; reverting its recorded deltas first", match_id)

        if self.ranked_only and not match.ranked:
            if not match.settled:
                tx.update(MATCHES, match_id, {SETTLED_FIELD: True, "settledAt": format_timestamp(self.clock())})
            return SettlementSkipped(match_id, (SkipReason.UNRANKED,))

        participant_documents = tx.list_documents(participants_collection(match_id))
        participants = parse_participants(match_id, participant_documents)
        outcome = extract_outcome(match, participants)
        issues = eligibility_issues(match, outcome)
        if issues:
            return SettlementSkipped(match_id, tuple(issues))

        # A forced run starts from the ratings as they were before this match.
        previous_deltas = parse_recorded_deltas(match_id, participant_documents) if match.settled else {}

        current_ratings: dict[str, float] = {}
        for player_id in outcome.player_ids:
            rating = parse_player_rating(tx.get(PLAYERS, player_id))
            if rating is not None:
                current_ratings[player_id] = rating - previous_deltas.get(player_id, 0)

        self._revert_dropped_players(tx, match_id, participants, previous_deltas, outcome.player_ids)

        update = compute_update(
            outcome.team_a_ids,
            outcome.team_b_ids,
            current_ratings,
            winner=outcome.winner,
            score_a=outcome.score_a,
            score_b=outcome.score_b,
            k_factor=self.params.k_factor,
            default_rating=self.params.default_rating,
        )
        write_settlement(
            tx,
            match=match,
            participants=participants,
            update=update,
            algo_version=self.algo_version,
            settled_at=self.clock(),
        )
        return SettlementApplied(match_id, update, self.algo_version, forced=match.settled)

    def _revert_dropped_players(
        self,
        tx: Transaction,
        match_id: str,
        participants: Sequence[ParticipantRecord],
        previous_deltas: Mapping[str, int],
        roster: Sequence[str],
    ) -> None:
        """Undo the earlier delta of players no longer on either roster."""
        dropped = set(previous_deltas) - set(roster)
        if not dropped:
            return
        for player_id in sorted(dropped):
            rating = parse_player_rating(tx.get(PLAYERS, player_id))
            if rating is not None:
                reverted = round_half_away_from_zero(rating - previous_deltas[player_id])
                tx.set(PLAYERS, player_id, {RATING_FIELD: reverted}, merge=True)
        collection = participants_collection(match_id)
        for participant in participants:
            if participant.player_id in dropped:
                tx.set(collection, participant.doc_id, {RATING_FIELD: None}, merge=True)


__all__ = [
    "SettlementApplied",
    "SettlementLedger",
    "SettlementResult",
    "SettlementSkipped",
    "rating_summary",
    "write_settlement",
]
