"""
Pytest configuration and fixtures for prediction platform tests.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from predictor.app import create_app
from predictor.models import (
    db, User, Tournament, TournamentGroup, TournamentTeam, Match
)
from shared.state_machine import MatchStatus, Round

KICKOFF = datetime(2026, 6, 11, 18, 0)


def clear_tables():
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty database inside an app context that stays pushed for the test."""
    with app.app_context():
        clear_tables()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """File-backed app so concurrent threads get separate connections."""
    app = create_app('testing', overrides={
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'predictor.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'TRANSACTION_MAX_ATTEMPTS': 5,
        'GROUP_MAX_MEMBERS': 5,
    })
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def make_users(count, prefix='user', role='user'):
    users = [
        User(name=f'{prefix.title()} {i}', email=f'{prefix}{i}@example.com', role=role)
        for i in range(1, count + 1)
    ]
    db.session.add_all(users)
    db.session.commit()
    return users


@pytest.fixture
def sample_users(db_session):
    """Five regular users."""
    return make_users(5)


@pytest.fixture
def sample_admin(db_session):
    """A platform admin."""
    return make_users(1, prefix='admin', role='admin')[0]


@pytest.fixture
def sample_tournament(db_session):
    """A tournament with one bracket group."""
    tournament = Tournament(
        name='World Cup',
        slug='world-cup',
        location='North America',
        start_date=KICKOFF,
        end_date=KICKOFF + timedelta(days=38)
    )
    db.session.add(tournament)
    db.session.flush()
    db.session.add(TournamentGroup(tournament_id=tournament.id, name='Group A'))
    db.session.commit()

    db.session.refresh(tournament)
    return tournament


@pytest.fixture
def sample_teams(db_session, sample_tournament):
    """Four active teams in Group A."""
    group = sample_tournament.tournament_groups[0]
    teams = []
    for name, flag in [('Brazil', 'BR'), ('Mexico', 'MX'), ('Japan', 'JP'), ('Ghana', 'GH')]:
        team = TournamentTeam(
            name=name,
            flag=flag,
            tournament_id=sample_tournament.id,
            tournament_group_id=group.id
        )
        db.session.add(team)
        teams.append(team)

    db.session.commit()

    for team in teams:
        db.session.refresh(team)

    return teams


@pytest.fixture
def sample_match(db_session, sample_tournament, sample_teams):
    """An upcoming group-stage match between the first two teams."""
    match = Match(
        tournament_id=sample_tournament.id,
        stadium='Estadio Azteca',
        match_datetime=KICKOFF,
        status=MatchStatus.UPCOMING.value,
        round=Round.GROUP.value,
        team_a_id=sample_teams[0].id,
        team_b_id=sample_teams[1].id
    )
    db.session.add(match)
    db.session.commit()

    db.session.refresh(match)
    return match


@pytest.fixture
def knockout_match(db_session, sample_tournament, sample_teams):
    """An upcoming quarter-final between the last two teams."""
    match = Match(
        tournament_id=sample_tournament.id,
        stadium='MetLife Stadium',
        match_datetime=KICKOFF + timedelta(days=25),
        status=MatchStatus.UPCOMING.value,
        round=Round.QUARTER_FINAL.value,
        team_a_id=sample_teams[2].id,
        team_b_id=sample_teams[3].id
    )
    db.session.add(match)
    db.session.commit()

    db.session.refresh(match)
    return match


@pytest.fixture
def mock_redis(mocker):
    """Stand-in redis client for event publishing and locks."""
    client = mocker.MagicMock()
    client.lock.return_value = mocker.MagicMock()
    return client


@pytest.fixture
def user_factory(app):
    """Create and commit N users in the current app context."""
    return make_users
