import logging
from contextlib import contextmanager
from typing import Dict, Iterable, Optional

from redis.exceptions import LockNotOwnedError

from shared.errors import InvalidState, NotFound, ScoringBusy
from shared.state_machine import MatchStatus, Round, TeamStatus
from .models import (
    db, Match, MatchPrediction, Tournament, TournamentScore, TournamentTeam, WinnerPrediction
)
from .score_calculator import ScoreCalculator
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)


class ScoringEngine:
    """
    Maintains the materialized tournament_scores table.

    Totals are always recomputed from scratch for every affected user, so
    re-running any scoring step is idempotent. Recomputation for a
    tournament is serialized by a row lock on the tournament (and, when
    redis is configured, a distributed lock around the whole transaction).

    The apply_* methods run inside the caller's transaction; the score_* and
    recompute_* methods open their own.
    """

    def __init__(
        self,
        session=None,
        calculator: ScoreCalculator = None,
        transactions: TransactionRunner = None,
        redis_client=None,
        lock_timeout: int = 30
    ):
        self.session = session or db.session
        self.calculator = calculator or ScoreCalculator()
        self.transactions = transactions or TransactionRunner(self.session)
        self.redis = redis_client
        self.lock_timeout = lock_timeout

    @contextmanager
    def tournament_lock(self, tournament_id: int):
        """Distributed per-tournament lock; a no-op without redis."""
        if self.redis is None:
            yield
            return

        lock = self.redis.lock(
            f"lock:scores:{tournament_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout
        )
        if not lock.acquire():
            logger.warning(f"Timed out waiting for the scoring lock of tournament {tournament_id}")
            raise ScoringBusy(tournament_id=tournament_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockNotOwnedError:
                # Expired while held; the tournament row lock still serialized the writes.
                logger.warning(f"Scoring lock of tournament {tournament_id} expired before release")

    # ==================== Triggers ====================

    def score_match(self, match_id: int) -> Dict[int, int]:
        match = self.session.get(Match, match_id)
        if match is None:
            raise NotFound("Match not found")
        with self.tournament_lock(match.tournament_id):
            return self.transactions.run(lambda: self.apply_match_result(match_id))

    def apply_match_result(self, match_id: int) -> Dict[int, int]:
        match = self.session.get(Match, match_id)
        if match.status != MatchStatus.COMPLETED:
            raise InvalidState("Match is not completed")

        user_ids = self.session.scalars(
            db.select(MatchPrediction.user_id).filter_by(match_id=match_id).distinct()
        ).all()
        totals = self._recompute_users(match.tournament_id, user_ids)
        logger.info(f"Scored match {match_id}: {len(totals)} users recomputed")
        return totals

    def score_team(self, team_id: int) -> Dict[int, int]:
        team = self.session.get(TournamentTeam, team_id)
        if team is None:
            raise NotFound("Team not found")
        with self.tournament_lock(team.tournament_id):
            return self.transactions.run(lambda: self.apply_team_resolution(team_id))

    def apply_team_resolution(self, team_id: int) -> Dict[int, int]:
        team = self.session.get(TournamentTeam, team_id)
        if team.status == TeamStatus.ACTIVE:
            raise InvalidState("Team is still active")

        user_ids = self.session.scalars(
            db.select(WinnerPrediction.user_id).filter_by(tournament_team_id=team_id).distinct()
        ).all()
        totals = self._recompute_users(team.tournament_id, user_ids)
        logger.info(f"Scored {team.status} team {team_id}: {len(totals)} users recomputed")
        return totals

    def recompute_user(self, user_id: int, tournament_id: int) -> int:
        with self.tournament_lock(tournament_id):
            totals = self.transactions.run(
                lambda: self._recompute_users(tournament_id, [user_id])
            )
        return totals[user_id]

    def recompute_tournament(self, tournament_id: int) -> Dict[int, int]:
        """Rebuild every score row of a tournament; safe to run at any time."""
        if self.session.get(Tournament, tournament_id) is None:
            raise NotFound("Tournament not found")

        def work():
            match_users = self.session.scalars(
                db.select(MatchPrediction.user_id)
                .join(Match, MatchPrediction.match_id == Match.id)
                .where(Match.tournament_id == tournament_id)
            ).all()
            winner_users = self.session.scalars(
                db.select(WinnerPrediction.user_id).filter_by(tournament_id=tournament_id)
            ).all()
            scored_users = self.session.scalars(
                db.select(TournamentScore.user_id).filter_by(tournament_id=tournament_id)
            ).all()
            return self._recompute_users(
                tournament_id, set(match_users) | set(winner_users) | set(scored_users)
            )

        with self.tournament_lock(tournament_id):
            totals = self.transactions.run(work)
        logger.info(f"Recomputed tournament {tournament_id}: {len(totals)} users")
        return totals

    # ==================== Recomputation ====================

    def _recompute_users(self, tournament_id: int, user_ids: Iterable[int]) -> Dict[int, int]:
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return {}

        self.session.execute(
            db.select(Tournament.id).where(Tournament.id == tournament_id).with_for_update()
        )

        totals = {user_id: 0 for user_id in user_ids}

        match_rows = self.session.execute(
            db.select(
                MatchPrediction.user_id,
                MatchPrediction.team_a_score,
                MatchPrediction.team_b_score,
                Match.team_a_score,
                Match.team_b_score
            )
            .join(Match, MatchPrediction.match_id == Match.id)
            .where(
                Match.tournament_id == tournament_id,
                Match.status == MatchStatus.COMPLETED.value,
                MatchPrediction.user_id.in_(user_ids)
            )
        ).all()
        for user_id, predicted_a, predicted_b, actual_a, actual_b in match_rows:
            totals[user_id] += self.calculator.points_for_match_prediction(
                predicted_a, predicted_b, actual_a, actual_b
            )

        winner_rows = self.session.execute(
            db.select(WinnerPrediction.user_id, WinnerPrediction.round, TournamentTeam)
            .join(TournamentTeam, WinnerPrediction.tournament_team_id == TournamentTeam.id)
            .where(
                WinnerPrediction.tournament_id == tournament_id,
                WinnerPrediction.user_id.in_(user_ids),
                TournamentTeam.status != TeamStatus.ACTIVE.value
            )
        ).all()
        furthest_cache = {}
        for user_id, round_value, team in winner_rows:
            if team.id not in furthest_cache:
                furthest_cache[team.id] = self.furthest_round(team)
            totals[user_id] += self.calculator.points_for_winner_prediction(
                Round(round_value), furthest_cache[team.id]
            )

        for user_id, total in totals.items():
            self._store(user_id, tournament_id, total)
        self.session.flush()
        return totals

    def furthest_round(self, team: TournamentTeam) -> Optional[Round]:
        """Last round a resolved team reached; None while it is still active."""
        if team.status == TeamStatus.ACTIVE:
            return None
        if team.status == TeamStatus.WINNER:
            return Round.FINAL

        rounds = self.session.scalars(
            db.select(Match.round).where(
                db.or_(Match.team_a_id == team.id, Match.team_b_id == team.id)
            ).distinct()
        ).all()
        if not rounds:
            return Round.GROUP
        return max(Round(r) for r in rounds)

    def _store(self, user_id: int, tournament_id: int, total: int):
        row = self.session.scalars(
            db.select(TournamentScore).filter_by(user_id=user_id, tournament_id=tournament_id)
        ).first()
        if row is None:
            row = TournamentScore(user_id=user_id, tournament_id=tournament_id, score=total)
            self.session.add(row)
        elif row.score != total:
            row.score = total
