from enum import Enum
from typing import Optional

from shared.state_machine import Round


class Outcome(str, Enum):
    TEAM_A = "team_a"
    DRAW = "draw"
    TEAM_B = "team_b"


class ScoreCalculator:
    """
    Points awarded for predictions.

    Point values are policy and come from configuration; this class only
    decides which tier a prediction falls into.
    """

    def __init__(
        self,
        exact_score_points: int = 3,
        correct_outcome_points: int = 1,
        round_advance_points: int = 2
    ):
        self.exact_score_points = exact_score_points
        self.correct_outcome_points = correct_outcome_points
        self.round_advance_points = round_advance_points

    @staticmethod
    def match_outcome(team_a_score: int, team_b_score: int) -> Outcome:
        """Result from team A's point of view, on the scoreline alone."""
        if team_a_score > team_b_score:
            return Outcome.TEAM_A
        if team_a_score < team_b_score:
            return Outcome.TEAM_B
        return Outcome.DRAW

    def points_for_match_prediction(
        self,
        predicted_a: int,
        predicted_b: int,
        actual_a: int,
        actual_b: int
    ) -> int:
        """
        Score one match prediction against the final result.

        Returns:
            exact_score_points for the exact scoreline, correct_outcome_points
            when only the win/draw/loss direction matches, otherwise 0.
        """
        if predicted_a == actual_a and predicted_b == actual_b:
            return self.exact_score_points
        if self.match_outcome(predicted_a, predicted_b) == self.match_outcome(actual_a, actual_b):
            return self.correct_outcome_points
        return 0

    def points_for_winner_prediction(
        self,
        predicted_round: Round,
        furthest_round: Optional[Round]
    ) -> int:
        """
        Score a round prediction for a team whose run has ended.

        Args:
            predicted_round: Round the user said the team would reach
            furthest_round: Last round the team reached, or None while the
                team is still active (unresolved predictions score 0)
        """
        if furthest_round is None:
            return 0
        if furthest_round >= predicted_round:
            return self.round_advance_points
        return 0
