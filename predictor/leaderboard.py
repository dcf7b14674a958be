from typing import List, Optional

from shared.errors import NotFound, ValidationError
from .models import db, GroupMember, PredictionGroup, Tournament, TournamentScore, User


def competition_ranks(scores: List[int]) -> List[int]:
    """
    Ranks for scores already sorted descending: ties share a rank and the
    next distinct score skips ahead (1, 2, 2, 4).
    """
    ranks = []
    previous = None
    for position, score in enumerate(scores, start=1):
        if score != previous:
            rank = position
            previous = score
        ranks.append(rank)
    return ranks


class Leaderboard:
    """
    Read side of scoring. Reads only the materialized tournament_scores
    rows, never raw predictions.

    Ordering is score descending, then user id ascending. Ranks use
    competition ranking: one plus the number of users with a strictly
    greater score. Users without a score row count as 0 points.
    """

    def __init__(self, session=None, default_limit: int = 50, max_limit: int = 1000):
        self.session = session or db.session
        self.default_limit = default_limit
        self.max_limit = max_limit

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return min(self.default_limit, self.max_limit)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        return min(limit, self.max_limit)

    def _require_tournament(self, tournament_id: int):
        if self.session.get(Tournament, tournament_id) is None:
            raise NotFound("Tournament not found")

    def get_leaderboard(self, tournament_id: int, limit: int = None) -> List[dict]:
        self._require_tournament(tournament_id)
        limit = self._clamp_limit(limit)

        rows = self.session.execute(
            db.select(TournamentScore.user_id, User.name, User.image, TournamentScore.score)
            .join(User, TournamentScore.user_id == User.id)
            .where(TournamentScore.tournament_id == tournament_id)
            .order_by(TournamentScore.score.desc(), TournamentScore.user_id.asc())
            .limit(limit)
        ).all()

        ranks = competition_ranks([row.score for row in rows])
        return [
            {
                'rank': rank,
                'user_id': row.user_id,
                'name': row.name,
                'image': row.image,
                'score': row.score,
            }
            for rank, row in zip(ranks, rows)
        ]

    def get_user_rank(self, tournament_id: int, user_id: int) -> dict:
        self._require_tournament(tournament_id)
        if self.session.get(User, user_id) is None:
            raise NotFound("User not found")

        score = self.session.scalar(
            db.select(TournamentScore.score).filter_by(tournament_id=tournament_id, user_id=user_id)
        )
        has_score = score is not None
        score = score or 0

        ahead = self.session.scalar(
            db.select(db.func.count(TournamentScore.id)).where(
                TournamentScore.tournament_id == tournament_id,
                TournamentScore.score > score
            )
        )
        return {
            'user_id': user_id,
            'tournament_id': tournament_id,
            'score': score,
            'rank': ahead + 1,
            'has_score': has_score,
        }

    def get_group_standings(self, group_id: int) -> List[dict]:
        """Members of a prediction group ranked on the group's tournament."""
        group = self.session.get(PredictionGroup, group_id)
        if group is None:
            raise NotFound("Group not found")

        score = db.func.coalesce(TournamentScore.score, 0)
        rows = self.session.execute(
            db.select(User.id, User.name, User.image, score.label('score'))
            .join(GroupMember, GroupMember.user_id == User.id)
            .outerjoin(
                TournamentScore,
                db.and_(
                    TournamentScore.user_id == User.id,
                    TournamentScore.tournament_id == group.tournament_id
                )
            )
            .where(GroupMember.group_id == group_id)
            .order_by(score.desc(), User.id.asc())
        ).all()

        ranks = competition_ranks([row.score for row in rows])
        return [
            {
                'rank': rank,
                'user_id': row.id,
                'name': row.name,
                'image': row.image,
                'score': row.score,
                'is_admin': row.id == group.admin_id,
            }
            for rank, row in zip(ranks, rows)
        ]
