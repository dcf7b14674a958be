from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

from shared.state_machine import Round, TournamentStatus, MatchStatus, TeamStatus

db = SQLAlchemy()


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default='user')
    image = db.Column(db.String(500), nullable=True)
    country = db.Column(db.String(100), nullable=True)
    country_flag = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = db.relationship('GroupMember', back_populates='user')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'image': self.image,
            'country': self.country,
            'country_flag': self.country_flag,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), nullable=False)
    location = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TournamentStatus.UPCOMING.value)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    current_stage = db.Column(db.String(20), nullable=False, default=Round.GROUP.value)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament_groups = db.relationship('TournamentGroup', back_populates='tournament')
    teams = db.relationship('TournamentTeam', back_populates='tournament')
    matches = db.relationship('Match', back_populates='tournament')

    __table_args__ = (
        db.UniqueConstraint('name', 'start_date', 'end_date', name='unique_tournament_edition'),
    )

    @property
    def stage(self) -> Round:
        return Round(self.current_stage)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'location': self.location,
            'status': self.status,
            'current_stage': self.current_stage,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
        }


class TournamentGroup(db.Model):
    """Bracket group ("Group A"), not a prediction group."""
    __tablename__ = 'tournament_groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)

    tournament = db.relationship('Tournament', back_populates='tournament_groups')
    teams = db.relationship('TournamentTeam', back_populates='tournament_group')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'name', name='unique_group_name_per_tournament'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'tournament_id': self.tournament_id,
        }


class TournamentTeam(db.Model):
    __tablename__ = 'tournament_teams'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    flag = db.Column(db.String(20), nullable=False)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    tournament_group_id = db.Column(db.Integer, db.ForeignKey('tournament_groups.id'), nullable=False)
    group_points = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TeamStatus.ACTIVE.value)

    tournament = db.relationship('Tournament', back_populates='teams')
    tournament_group = db.relationship('TournamentGroup', back_populates='teams')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'flag': self.flag,
            'tournament_id': self.tournament_id,
            'tournament_group_id': self.tournament_group_id,
            'group_points': self.group_points,
            'status': self.status,
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    stadium = db.Column(db.String(200), nullable=False)
    match_datetime = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=MatchStatus.UPCOMING.value)
    round = db.Column(db.String(20), nullable=False)

    team_a_id = db.Column(db.Integer, db.ForeignKey('tournament_teams.id'), nullable=False)
    team_b_id = db.Column(db.Integer, db.ForeignKey('tournament_teams.id'), nullable=False)

    # Present iff status is completed
    team_a_score = db.Column(db.Integer, nullable=True)
    team_b_score = db.Column(db.Integer, nullable=True)
    penalty_winner_id = db.Column(db.Integer, db.ForeignKey('tournament_teams.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches')
    team_a = db.relationship('TournamentTeam', foreign_keys=[team_a_id])
    team_b = db.relationship('TournamentTeam', foreign_keys=[team_b_id])
    predictions = db.relationship('MatchPrediction', back_populates='match')

    __table_args__ = (
        db.CheckConstraint('team_a_id <> team_b_id', name='match_distinct_teams'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'stadium': self.stadium,
            'match_datetime': self.match_datetime.isoformat() if self.match_datetime else None,
            'status': self.status,
            'round': self.round,
            'team_a_id': self.team_a_id,
            'team_b_id': self.team_b_id,
            'team_a_score': self.team_a_score,
            'team_b_score': self.team_b_score,
            'penalty_winner_id': self.penalty_winner_id,
        }


class MatchPrediction(db.Model):
    __tablename__ = 'match_predictions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False, index=True)
    team_a_score = db.Column(db.Integer, nullable=False)
    team_b_score = db.Column(db.Integer, nullable=False)
    penalty_pick = db.Column(db.String(10), nullable=True)  # 'team_a' or 'team_b'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    match = db.relationship('Match', back_populates='predictions')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'match_id', name='unique_prediction_per_match'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'match_id': self.match_id,
            'team_a_score': self.team_a_score,
            'team_b_score': self.team_b_score,
            'penalty_pick': self.penalty_pick,
        }


class WinnerPrediction(db.Model):
    __tablename__ = 'winner_predictions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    tournament_team_id = db.Column(db.Integer, db.ForeignKey('tournament_teams.id'), nullable=False, index=True)
    round = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    team = db.relationship('TournamentTeam')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'tournament_id', 'round', name='unique_winner_prediction_per_round'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'tournament_id': self.tournament_id,
            'tournament_team_id': self.tournament_team_id,
            'round': self.round,
        }


class PredictionGroup(db.Model):
    __tablename__ = 'prediction_groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    # Mirrors len(members); capacity is claimed by a conditional UPDATE on this column
    member_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    admin = db.relationship('User')
    tournament = db.relationship('Tournament')
    members = db.relationship('GroupMember', back_populates='group', cascade='all, delete-orphan')
    invite = db.relationship('GroupInvite', back_populates='group', uselist=False,
                             cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'admin_id': self.admin_id,
            'tournament_id': self.tournament_id,
            'member_count': self.member_count,
        }


class GroupMember(db.Model):
    __tablename__ = 'group_members'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('prediction_groups.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    group = db.relationship('PredictionGroup', back_populates='members')
    user = db.relationship('User', back_populates='memberships')

    __table_args__ = (
        db.UniqueConstraint('group_id', 'user_id', name='unique_group_membership'),
    )


class GroupInvite(db.Model):
    __tablename__ = 'group_invites'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('prediction_groups.id', ondelete='CASCADE'),
                         unique=True, nullable=False)
    code = db.Column(db.String(10), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    group = db.relationship('PredictionGroup', back_populates='invite')

    def to_dict(self):
        return {
            'group_id': self.group_id,
            'code': self.code,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class TournamentScore(db.Model):
    """Materialized per-user total; written only by the scoring engine."""
    __tablename__ = 'tournament_scores'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'tournament_id', name='unique_score_per_tournament'),
        db.Index('ix_tournament_scores_ranking', 'tournament_id', 'score'),
    )

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'tournament_id': self.tournament_id,
            'score': self.score,
        }
