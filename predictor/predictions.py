import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from shared.errors import InvalidState, MatchLocked, NotFound, ValidationError
from shared.state_machine import MatchStatus, Round, TeamStatus, TournamentStatus, parse_round
from .models import db, Match, MatchPrediction, Tournament, TournamentTeam, User, WinnerPrediction
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)

PENALTY_PICKS = ('team_a', 'team_b')


def validate_score(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    return value


class PredictionStore:
    """
    Match-score and round-winner predictions.

    One row per (user, match) and per (user, tournament, round): a repeated
    submission updates the existing row. A concurrent first submission that
    loses the unique-constraint race is re-run and lands as an update.
    """

    def __init__(self, session=None, transactions: TransactionRunner = None):
        self.session = session or db.session
        self.transactions = transactions or TransactionRunner(self.session)

    def _require_user(self, user_id: int):
        if self.session.get(User, user_id) is None:
            raise NotFound("User not found")

    def upsert_match_prediction(
        self,
        user_id: int,
        match_id: int,
        team_a_score: int,
        team_b_score: int,
        penalty_pick: Optional[str] = None
    ) -> MatchPrediction:
        validate_score(team_a_score, 'team_a_score')
        validate_score(team_b_score, 'team_b_score')
        if penalty_pick is not None and penalty_pick not in PENALTY_PICKS:
            raise ValidationError("penalty_pick must be 'team_a' or 'team_b'")

        def work():
            self._require_user(user_id)
            # Lock the match row so a prediction cannot slip in while the result is being recorded
            match = self.session.scalars(
                db.select(Match).filter_by(id=match_id).with_for_update()
            ).first()
            if match is None:
                raise NotFound("Match not found")
            if match.status == MatchStatus.COMPLETED:
                raise MatchLocked()
            if penalty_pick is not None and Round(match.round) is Round.GROUP:
                raise ValidationError("Penalty picks only apply to knockout matches")

            prediction = self.session.scalars(
                db.select(MatchPrediction).filter_by(user_id=user_id, match_id=match_id)
            ).first()
            if prediction is None:
                prediction = MatchPrediction(user_id=user_id, match_id=match_id)
                self.session.add(prediction)
            prediction.team_a_score = team_a_score
            prediction.team_b_score = team_b_score
            prediction.penalty_pick = penalty_pick
            self.session.flush()
            return prediction

        prediction = self.transactions.run(work, retry_on=(IntegrityError,))
        logger.debug(f"User {user_id} predicted {team_a_score}-{team_b_score} for match {match_id}")
        return prediction

    def upsert_winner_prediction(
        self,
        user_id: int,
        tournament_id: int,
        round_name: str,
        team_id: int
    ) -> WinnerPrediction:
        """
        Record which team the user expects to reach a round.

        The round must still lie ahead of the tournament's current stage and
        the team must still be active, so nobody predicts an outcome that is
        already known.
        """
        predicted_round = parse_round(round_name)

        def work():
            self._require_user(user_id)
            tournament = self.session.get(Tournament, tournament_id)
            if tournament is None:
                raise NotFound("Tournament not found")
            if tournament.status == TournamentStatus.COMPLETED:
                raise InvalidState("Tournament is already completed")
            if predicted_round <= tournament.stage:
                raise InvalidState(f"Predictions for {predicted_round.value} are closed")

            team = self.session.get(TournamentTeam, team_id)
            if team is None or team.tournament_id != tournament_id:
                raise ValidationError("Team does not belong to this tournament")
            if team.status != TeamStatus.ACTIVE:
                raise InvalidState(f"Team is already {team.status}")

            prediction = self.session.scalars(
                db.select(WinnerPrediction).filter_by(
                    user_id=user_id,
                    tournament_id=tournament_id,
                    round=predicted_round.value
                )
            ).first()
            if prediction is None:
                prediction = WinnerPrediction(
                    user_id=user_id,
                    tournament_id=tournament_id,
                    round=predicted_round.value
                )
                self.session.add(prediction)
            prediction.tournament_team_id = team_id
            self.session.flush()
            return prediction

        return self.transactions.run(work, retry_on=(IntegrityError,))

    def list_match_predictions(self, user_id: int, tournament_id: int) -> List[dict]:
        """A user's match predictions in a tournament with match and team details, by kickoff."""
        team_a = aliased(TournamentTeam)
        team_b = aliased(TournamentTeam)
        rows = self.session.execute(
            db.select(MatchPrediction, Match, team_a, team_b)
            .join(Match, MatchPrediction.match_id == Match.id)
            .join(team_a, Match.team_a_id == team_a.id)
            .join(team_b, Match.team_b_id == team_b.id)
            .where(
                MatchPrediction.user_id == user_id,
                Match.tournament_id == tournament_id
            )
            .order_by(Match.match_datetime, Match.id)
        ).all()

        return [
            {
                'id': prediction.id,
                'match_id': match.id,
                'team_a_score': prediction.team_a_score,
                'team_b_score': prediction.team_b_score,
                'penalty_pick': prediction.penalty_pick,
                'match_datetime': match.match_datetime.isoformat(),
                'stadium': match.stadium,
                'round': match.round,
                'match_status': match.status,
                'team_a_id': home.id,
                'team_a_name': home.name,
                'team_a_flag': home.flag,
                'team_b_id': away.id,
                'team_b_name': away.name,
                'team_b_flag': away.flag,
            }
            for prediction, match, home, away in rows
        ]

    def list_winner_predictions(self, user_id: int, tournament_id: int) -> List[dict]:
        rows = self.session.execute(
            db.select(WinnerPrediction, TournamentTeam)
            .join(TournamentTeam, WinnerPrediction.tournament_team_id == TournamentTeam.id)
            .where(
                WinnerPrediction.user_id == user_id,
                WinnerPrediction.tournament_id == tournament_id
            )
        ).all()

        predictions = [
            {
                'id': prediction.id,
                'round': prediction.round,
                'team_id': team.id,
                'team_name': team.name,
                'team_flag': team.flag,
                'team_status': team.status,
            }
            for prediction, team in rows
        ]
        predictions.sort(key=lambda p: Round(p['round']).order)
        return predictions
