import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from shared.errors import Conflict, InvalidState, NotFound, ValidationError
from shared.events import (
    match_completed_event, match_started_event, publish, stage_advanced_event, team_resolved_event, tournament_status_event
)
from shared.state_machine import (
    MatchStateMachine, MatchStatus, Round, TeamStateMachine, TeamStatus,
    TournamentStateMachine, advance_round, parse_round
)
from .auth import require_admin
from .identifiers import slugify
from .models import (
    db, GroupMember, Match, MatchPrediction, PredictionGroup, Tournament,
    TournamentGroup, TournamentTeam, User
)
from .predictions import validate_score
from .scoring_engine import ScoringEngine
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)

# Team attributes an admin may edit; status only changes through eliminate/crown
TEAM_FIELDS = ('name', 'flag', 'group_points')


class TournamentRegistry:
    """
    Manages tournament lifecycle:
    - Create tournaments, bracket groups, teams and matches (admin only)
    - Move matches, teams and stages through their state machines
    - Trigger score recomputation when results land
    - Announce state changes on the tournament's event channel
    """

    def __init__(
        self,
        session=None,
        scoring: ScoringEngine = None,
        transactions: TransactionRunner = None,
        redis_client=None,
        default_limit: int = 50,
        max_limit: int = 1000
    ):
        self.session = session or db.session
        self.transactions = transactions or TransactionRunner(self.session)
        self.scoring = scoring or ScoringEngine(self.session, transactions=self.transactions)
        self.redis = redis_client
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ==================== Reads ====================

    def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = self.session.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound("Tournament not found")
        return tournament

    def get_latest_tournament(self) -> Optional[Tournament]:
        """The tournament the home page shows: the most recently created one."""
        return self.session.scalars(
            db.select(Tournament).order_by(Tournament.id.desc()).limit(1)
        ).first()

    def list_tournaments(self, status: str = None, limit: int = None, offset: int = 0) -> List[Tournament]:
        if limit is None:
            limit = self.default_limit
        elif isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset must be a non-negative integer")
        limit = min(limit, self.max_limit)

        query = db.select(Tournament)
        if status:
            query = query.filter_by(status=status)
        query = query.order_by(Tournament.start_date.desc(), Tournament.id.desc())
        return list(self.session.scalars(query.offset(offset).limit(limit)))

    def get_match(self, match_id: int) -> Match:
        match = self.session.get(Match, match_id)
        if match is None:
            raise NotFound("Match not found")
        return match

    def get_team(self, team_id: int) -> TournamentTeam:
        team = self.session.get(TournamentTeam, team_id)
        if team is None:
            raise NotFound("Team not found")
        return team

    def list_tournament_groups(self, tournament_id: int) -> List[TournamentGroup]:
        self.get_tournament(tournament_id)
        return list(self.session.scalars(
            db.select(TournamentGroup).filter_by(tournament_id=tournament_id).order_by(TournamentGroup.name)
        ))

    def list_teams(self, tournament_id: int, active_only: bool = False) -> List[TournamentTeam]:
        self.get_tournament(tournament_id)
        query = db.select(TournamentTeam).filter_by(tournament_id=tournament_id)
        if active_only:
            query = query.filter_by(status=TeamStatus.ACTIVE.value)
        return list(self.session.scalars(query.order_by(TournamentTeam.name)))

    def list_matches(self, tournament_id: int, round_name: str = None) -> List[Match]:
        self.get_tournament(tournament_id)
        query = db.select(Match).filter_by(tournament_id=tournament_id)
        if round_name:
            query = query.filter_by(round=parse_round(round_name).value)
        return list(self.session.scalars(query.order_by(Match.match_datetime, Match.id)))

    def dashboard_stats(self, actor) -> dict:
        require_admin(actor)

        def count(model):
            return self.session.scalar(db.select(db.func.count(model.id)))

        return {
            'user_count': count(User),
            'tournament_count': count(Tournament),
            'group_count': count(PredictionGroup),
            'membership_count': count(GroupMember),
            'match_prediction_count': count(MatchPrediction),
        }

    # ==================== Tournaments ====================

    def create_tournament(
        self,
        actor,
        name: str,
        location: str,
        start_date: datetime,
        end_date: datetime,
        slug: str = None
    ) -> Tournament:
        require_admin(actor)
        if not name or not location:
            raise ValidationError("Tournament name and location are required")
        if end_date < start_date:
            raise ValidationError("Tournament cannot end before it starts")

        def work():
            tournament = Tournament(
                name=name,
                slug=slug or slugify(name),
                location=location,
                start_date=start_date,
                end_date=end_date
            )
            self.session.add(tournament)
            self.session.flush()
            return tournament

        try:
            tournament = self.transactions.run(work)
        except IntegrityError:
            raise Conflict("A tournament with this name and dates already exists")

        logger.info(f"Created tournament {tournament.id} ({tournament.name})")
        return tournament

    def update_tournament_status(self, actor, tournament_id: int, action: str) -> Tournament:
        """Apply a status action ('start' or 'complete')."""
        require_admin(actor)

        def work():
            tournament = self.get_tournament(tournament_id)
            sm = TournamentStateMachine.from_state_string(tournament.status)
            old_status = sm.state.value
            tournament.status = sm.transition(action).value
            return old_status, tournament

        old_status, tournament = self.transactions.run(work)
        publish(self.redis, tournament_status_event(tournament_id, old_status, tournament.status))
        return tournament

    def advance_stage(self, actor, tournament_id: int, stage: str) -> Tournament:
        """Move the tournament's current stage forward; never backwards."""
        require_admin(actor)
        target = parse_round(stage)

        def work():
            tournament = self.session.scalars(
                db.select(Tournament).filter_by(id=tournament_id).with_for_update()
            ).first()
            if tournament is None:
                raise NotFound("Tournament not found")
            old_stage = tournament.stage
            tournament.current_stage = advance_round(old_stage, target).value
            return old_stage, tournament

        old_stage, tournament = self.transactions.run(work)
        logger.info(f"Tournament {tournament_id} advanced from {old_stage.value} to {target.value}")
        publish(self.redis, stage_advanced_event(tournament_id, old_stage.value, target.value))
        return tournament

    # ==================== Bracket groups & teams ====================

    def create_tournament_group(self, actor, tournament_id: int, name: str) -> TournamentGroup:
        require_admin(actor)
        if not name:
            raise ValidationError("Group name is required")

        def work():
            self.get_tournament(tournament_id)
            group = TournamentGroup(tournament_id=tournament_id, name=name)
            self.session.add(group)
            self.session.flush()
            return group

        try:
            return self.transactions.run(work)
        except IntegrityError:
            raise Conflict(f"Group '{name}' already exists in this tournament")

    def create_team(
        self,
        actor,
        tournament_id: int,
        tournament_group_id: int,
        name: str,
        flag: str
    ) -> TournamentTeam:
        require_admin(actor)
        if not name or not flag:
            raise ValidationError("Team name and flag are required")

        def work():
            self.get_tournament(tournament_id)
            group = self.session.get(TournamentGroup, tournament_group_id)
            if group is None or group.tournament_id != tournament_id:
                raise ValidationError("Group does not belong to this tournament")
            team = TournamentTeam(
                tournament_id=tournament_id,
                tournament_group_id=tournament_group_id,
                name=name,
                flag=flag
            )
            self.session.add(team)
            self.session.flush()
            return team

        return self.transactions.run(work)

    def rename_tournament_group(self, actor, tournament_group_id: int, name: str) -> TournamentGroup:
        require_admin(actor)
        if not name or not name.strip():
            raise ValidationError("Group name is required")
        name = name.strip()

        def work():
            group = self.session.get(TournamentGroup, tournament_group_id)
            if group is None:
                raise NotFound("Group not found")
            group.name = name
            self.session.flush()
            return group

        try:
            return self.transactions.run(work)
        except IntegrityError:
            raise Conflict(f"Group '{name}' already exists in this tournament")

    def update_team(self, actor, team_id: int, updates: dict) -> TournamentTeam:
        """Edit a team's name, flag or group-stage points."""
        require_admin(actor)
        unknown = set(updates) - set(TEAM_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not updates:
            raise ValidationError("Nothing to update")
        for field in ('name', 'flag'):
            if field in updates and (not isinstance(updates[field], str) or not updates[field].strip()):
                raise ValidationError(f"'{field}' must be a non-empty string")
        if 'group_points' in updates:
            points = updates['group_points']
            if points is not None and (isinstance(points, bool) or not isinstance(points, int) or points < 0):
                raise ValidationError("'group_points' must be a non-negative integer")

        def work():
            team = self.get_team(team_id)
            for field, value in updates.items():
                setattr(team, field, value.strip() if isinstance(value, str) else value)
            return team

        team = self.transactions.run(work)
        logger.info(f"Updated team {team_id}: {', '.join(sorted(updates))}")
        return team

    def eliminate_team(self, actor, team_id: int) -> TournamentTeam:
        return self._resolve_team(actor, team_id, 'eliminate')

    def crown_winner(self, actor, team_id: int) -> TournamentTeam:
        return self._resolve_team(actor, team_id, 'crown')

    def _resolve_team(self, actor, team_id: int, action: str) -> TournamentTeam:
        require_admin(actor)
        team = self.get_team(team_id)
        tournament_id = team.tournament_id

        def work():
            team = self.session.scalars(
                db.select(TournamentTeam).filter_by(id=team_id).with_for_update()
            ).first()
            if action == 'crown':
                # Serializes concurrent crowns within the tournament
                self.session.execute(
                    db.select(Tournament.id).where(Tournament.id == tournament_id).with_for_update()
                )
                winner = self.session.scalars(
                    db.select(TournamentTeam).filter_by(
                        tournament_id=tournament_id, status=TeamStatus.WINNER.value
                    )
                ).first()
                if winner is not None:
                    raise InvalidState(f"{winner.name} has already been crowned")
            sm = TeamStateMachine.from_state_string(team.status)
            team.status = sm.transition(action).value
            self.session.flush()
            self.scoring.apply_team_resolution(team_id)
            return team

        with self.scoring.tournament_lock(tournament_id):
            team = self.transactions.run(work)

        logger.info(f"Team {team_id} is now {team.status}")
        publish(self.redis, team_resolved_event(tournament_id, team_id, team.status))
        return team

    # ==================== Matches ====================

    def create_match(
        self,
        actor,
        tournament_id: int,
        team_a_id: int,
        team_b_id: int,
        stadium: str,
        match_datetime: datetime,
        round_name: str
    ) -> Match:
        require_admin(actor)
        match_round = parse_round(round_name)
        if team_a_id == team_b_id:
            raise ValidationError("A team cannot play itself")
        if not stadium:
            raise ValidationError("Stadium is required")

        def work():
            self.get_tournament(tournament_id)
            for team_id in (team_a_id, team_b_id):
                self._require_active_team(tournament_id, team_id)

            match = Match(
                tournament_id=tournament_id,
                team_a_id=team_a_id,
                team_b_id=team_b_id,
                stadium=stadium,
                match_datetime=match_datetime,
                round=match_round.value,
                status=MatchStatus.UPCOMING.value
            )
            self.session.add(match)
            self.session.flush()
            return match

        return self.transactions.run(work)

    def _require_active_team(self, tournament_id: int, team_id: int) -> TournamentTeam:
        """A resolved team's furthest round is final, so it cannot be given new fixtures."""
        team = self.session.get(TournamentTeam, team_id)
        if team is None or team.tournament_id != tournament_id:
            raise ValidationError(f"Team {team_id} does not belong to this tournament")
        if team.status != TeamStatus.ACTIVE:
            raise InvalidState(f"{team.name} is {team.status} and cannot be scheduled")
        return team

    def update_match(self, actor, match_id: int, stadium: str = None, match_datetime: datetime = None) -> Match:
        """Reschedule or relocate a match that has not started yet."""
        require_admin(actor)
        if stadium is None and match_datetime is None:
            raise ValidationError("Nothing to update")
        if stadium is not None and not stadium.strip():
            raise ValidationError("Stadium cannot be empty")

        def work():
            match = self.session.scalars(
                db.select(Match).filter_by(id=match_id).with_for_update()
            ).first()
            if match is None:
                raise NotFound("Match not found")
            if match.status != MatchStatus.UPCOMING:
                raise InvalidState("Only upcoming matches can be edited")
            for team_id in (match.team_a_id, match.team_b_id):
                self._require_active_team(match.tournament_id, team_id)

            if stadium is not None:
                match.stadium = stadium.strip()
            if match_datetime is not None:
                match.match_datetime = match_datetime
            return match

        match = self.transactions.run(work)
        logger.info(f"Updated match {match_id}")
        return match

    def start_match(self, actor, match_id: int) -> Match:
        require_admin(actor)

        def work():
            match = self.get_match(match_id)
            sm = MatchStateMachine.from_state_string(match.status)
            match.status = sm.transition('start').value
            return match

        match = self.transactions.run(work)
        publish(self.redis, match_started_event(match.tournament_id, match_id))
        return match

    def complete_match(
        self,
        actor,
        match_id: int,
        team_a_score: int,
        team_b_score: int,
        penalty_winner_id: int = None
    ) -> Match:
        """
        Record a final result and rescore everyone who predicted the match.

        The result and the recomputed scores commit in the same transaction.
        A penalty winner is only accepted for a knockout match that ended
        level, and must be one of the two teams.
        """
        require_admin(actor)
        validate_score(team_a_score, 'team_a_score')
        validate_score(team_b_score, 'team_b_score')
        match = self.get_match(match_id)
        tournament_id = match.tournament_id

        def work():
            match = self.session.scalars(
                db.select(Match).filter_by(id=match_id).with_for_update()
            ).first()
            if penalty_winner_id is not None:
                if not Round(match.round).is_knockout:
                    raise ValidationError("Penalties only apply to knockout matches")
                if team_a_score != team_b_score:
                    raise ValidationError("Penalties only apply to a level score")
                if penalty_winner_id not in (match.team_a_id, match.team_b_id):
                    raise ValidationError("Penalty winner must be one of the two teams")

            sm = MatchStateMachine.from_state_string(match.status)
            match.status = sm.transition('complete', guard_context={
                'team_a_score': team_a_score,
                'team_b_score': team_b_score,
            }).value
            match.team_a_score = team_a_score
            match.team_b_score = team_b_score
            match.penalty_winner_id = penalty_winner_id
            self.session.flush()
            totals = self.scoring.apply_match_result(match_id)
            return match, totals

        with self.scoring.tournament_lock(tournament_id):
            match, totals = self.transactions.run(work)

        logger.info(f"Match {match_id} completed {team_a_score}-{team_b_score}")
        publish(self.redis, match_completed_event(
            tournament_id, match_id, team_a_score, team_b_score, len(totals)
        ))
        return match

    def rescore_tournament(self, actor, tournament_id: int) -> dict:
        require_admin(actor)
        return self.scoring.recompute_tournament(tournament_id)
