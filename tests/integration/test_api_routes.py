"""
Integration tests for API routes.
Tests the JSON blueprints end to end, including error-code mapping.
"""
import json
from datetime import datetime

import pytest
from conftest import clear_tables
from predictor.models import db, User, Tournament, TournamentGroup, TournamentTeam, Match


@pytest.fixture
def seeded(app):
    """Users, a tournament with two teams and one match; returns their ids."""
    with app.app_context():
        clear_tables()
        admin = User(name='Admin', email='admin@example.com', role='admin')
        alice = User(name='Alice', email='alice@example.com')
        bob = User(name='Bob', email='bob@example.com')
        carol = User(name='Carol', email='carol@example.com')
        tournament = Tournament(
            name='World Cup', slug='world-cup', location='North America',
            start_date=datetime(2026, 6, 11), end_date=datetime(2026, 7, 19)
        )
        db.session.add_all([admin, alice, bob, carol, tournament])
        db.session.flush()
        group = TournamentGroup(tournament_id=tournament.id, name='Group A')
        db.session.add(group)
        db.session.flush()
        home = TournamentTeam(name='Brazil', flag='BR', tournament_id=tournament.id, tournament_group_id=group.id)
        away = TournamentTeam(name='Mexico', flag='MX', tournament_id=tournament.id, tournament_group_id=group.id)
        db.session.add_all([home, away])
        db.session.flush()
        match = Match(
            tournament_id=tournament.id, stadium='Estadio Azteca',
            match_datetime=datetime(2026, 6, 11, 18), round='group',
            team_a_id=home.id, team_b_id=away.id
        )
        db.session.add(match)
        db.session.commit()

        return {
            'admin': admin.id,
            'alice': alice.id,
            'bob': bob.id,
            'carol': carol.id,
            'tournament': tournament.id,
            'bracket_group': group.id,
            'home': home.id,
            'away': away.id,
            'match': match.id,
        }


def as_user(user_id):
    return {'X-User-Id': str(user_id)}


def create_group(client, seeded, name='Friends'):
    response = client.post(
        '/api/v1/groups',
        json={'tournament_id': seeded['tournament'], 'name': name},
        headers=as_user(seeded['alice'])
    )
    assert response.status_code == 201
    return json.loads(response.data)


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client, seeded):
        """Health check should return 200 with redis disabled."""
        response = client.get('/health')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert data['redis'] == 'disabled'


class TestAuthentication:
    """Tests for the identity header."""

    def test_missing_header(self, client, seeded):
        response = client.get('/api/v1/groups')
        assert response.status_code == 401
        assert json.loads(response.data)['code'] == 'unauthenticated'

    def test_unknown_user(self, client, seeded):
        response = client.get('/api/v1/groups', headers=as_user(9999))
        assert response.status_code == 401

    def test_me(self, client, seeded):
        response = client.get('/api/v1/me', headers=as_user(seeded['bob']))
        assert response.status_code == 200
        assert json.loads(response.data)['name'] == 'Bob'

    def test_update_me(self, client, seeded):
        response = client.patch('/api/v1/me', json={'country': 'Mexico'}, headers=as_user(seeded['bob']))
        assert response.status_code == 200
        assert json.loads(response.data)['country'] == 'Mexico'


class TestGroupRoutes:
    """Tests for the prediction-group endpoints."""

    def test_create_and_join(self, client, seeded):
        created = create_group(client, seeded)
        assert created['group']['member_count'] == 1
        assert created['group']['is_admin'] is True

        response = client.post(
            '/api/v1/groups/join',
            json={'code': created['invite_code'].lower()},
            headers=as_user(seeded['bob'])
        )
        assert response.status_code == 200
        assert json.loads(response.data)['group']['member_count'] == 2

        response = client.get(f"/api/v1/groups/{created['group']['id']}", headers=as_user(seeded['bob']))
        data = json.loads(response.data)
        assert [m['name'] for m in data['members']] == ['Alice', 'Bob']

    def test_join_twice_is_conflict(self, client, seeded):
        created = create_group(client, seeded)
        payload = {'code': created['invite_code']}
        client.post('/api/v1/groups/join', json=payload, headers=as_user(seeded['bob']))

        response = client.post('/api/v1/groups/join', json=payload, headers=as_user(seeded['bob']))
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'already_member'

    def test_invalid_code_is_not_found(self, client, seeded):
        response = client.post('/api/v1/groups/join', json={'code': 'NOPE000000'}, headers=as_user(seeded['bob']))
        assert response.status_code == 404
        assert json.loads(response.data)['code'] == 'invalid_invite_code'

    def test_missing_name_is_validation_error(self, client, seeded):
        response = client.post(
            '/api/v1/groups', json={'tournament_id': seeded['tournament']}, headers=as_user(seeded['alice'])
        )
        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'validation_error'

    def test_non_admin_delete_is_forbidden(self, client, seeded):
        created = create_group(client, seeded)
        group_id = created['group']['id']
        client.post('/api/v1/groups/join', json={'code': created['invite_code']}, headers=as_user(seeded['bob']))

        response = client.delete(f'/api/v1/groups/{group_id}', headers=as_user(seeded['bob']))
        assert response.status_code == 403
        assert json.loads(response.data)['code'] == 'forbidden'

        response = client.get(f'/api/v1/groups/{group_id}', headers=as_user(seeded['alice']))
        assert json.loads(response.data)['member_count'] == 2

    def test_rotate_invalidates_old_code(self, client, seeded):
        created = create_group(client, seeded)
        group_id = created['group']['id']

        response = client.post(f'/api/v1/groups/{group_id}/invite/rotate', headers=as_user(seeded['alice']))
        assert response.status_code == 200
        new_code = json.loads(response.data)['code']

        assert client.get(f"/api/v1/invites/{created['invite_code']}").status_code == 404
        preview = json.loads(client.get(f'/api/v1/invites/{new_code}').data)
        assert preview['group']['id'] == group_id

    def test_leave_and_remove(self, client, seeded):
        created = create_group(client, seeded)
        group_id = created['group']['id']
        for user in ('bob', 'carol'):
            client.post('/api/v1/groups/join', json={'code': created['invite_code']}, headers=as_user(seeded[user]))

        assert client.post(f'/api/v1/groups/{group_id}/leave', headers=as_user(seeded['bob'])).status_code == 200
        response = client.delete(
            f"/api/v1/groups/{group_id}/members/{seeded['carol']}", headers=as_user(seeded['alice'])
        )
        assert response.status_code == 200

        response = client.post(f'/api/v1/groups/{group_id}/leave', headers=as_user(seeded['bob']))
        assert response.status_code == 404
        assert json.loads(response.data)['code'] == 'not_member'


class TestPredictionAndScoringRoutes:
    """Tests for predictions, results and leaderboards."""

    def test_predict_complete_and_rank(self, client, seeded):
        match_url = f"/api/v1/matches/{seeded['match']}"
        client.put(f'{match_url}/prediction', json={'team_a_score': 2, 'team_b_score': 1},
                   headers=as_user(seeded['alice']))
        client.put(f'{match_url}/prediction', json={'team_a_score': 3, 'team_b_score': 0},
                   headers=as_user(seeded['bob']))

        response = client.post(f'{match_url}/result', json={'team_a_score': 2, 'team_b_score': 1},
                               headers=as_user(seeded['admin']))
        assert response.status_code == 200
        assert json.loads(response.data)['status'] == 'completed'

        response = client.get(f"/api/v1/tournaments/{seeded['tournament']}/leaderboard?limit=10")
        entries = json.loads(response.data)['entries']
        assert [(e['user_id'], e['score'], e['rank']) for e in entries] == [
            (seeded['alice'], 3, 1), (seeded['bob'], 1, 2)
        ]

        response = client.get(f"/api/v1/tournaments/{seeded['tournament']}/rank", headers=as_user(seeded['carol']))
        rank = json.loads(response.data)
        assert rank['score'] == 0
        assert rank['rank'] == 3

    def test_prediction_after_result_is_locked(self, client, seeded):
        match_url = f"/api/v1/matches/{seeded['match']}"
        client.post(f'{match_url}/result', json={'team_a_score': 0, 'team_b_score': 0},
                    headers=as_user(seeded['admin']))

        response = client.put(f'{match_url}/prediction', json={'team_a_score': 0, 'team_b_score': 0},
                              headers=as_user(seeded['alice']))
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'match_locked'

    def test_result_requires_admin(self, client, seeded):
        response = client.post(f"/api/v1/matches/{seeded['match']}/result",
                               json={'team_a_score': 1, 'team_b_score': 0},
                               headers=as_user(seeded['alice']))
        assert response.status_code == 403

    def test_bad_leaderboard_limit(self, client, seeded):
        response = client.get(f"/api/v1/tournaments/{seeded['tournament']}/leaderboard?limit=0")
        assert response.status_code == 400

    def test_winner_prediction(self, client, seeded):
        response = client.put(
            f"/api/v1/tournaments/{seeded['tournament']}/winner-predictions",
            json={'round': 'final', 'team_id': seeded['home']},
            headers=as_user(seeded['alice'])
        )
        assert response.status_code == 200

        response = client.get(f"/api/v1/tournaments/{seeded['tournament']}/predictions",
                              headers=as_user(seeded['alice']))
        data = json.loads(response.data)
        assert data['winners'][0]['team_name'] == 'Brazil'
        assert data['matches'] == []


class TestAdminRoutes:
    """Tests for tournament administration endpoints."""

    def test_create_tournament(self, client, seeded):
        response = client.post('/api/v1/tournaments', json={
            'name': 'Euro 2028',
            'location': 'UK & Ireland',
            'start_date': '2028-06-09T00:00:00',
            'end_date': '2028-07-09T00:00:00'
        }, headers=as_user(seeded['admin']))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['slug'] == 'euro-2028'
        assert data['status'] == 'upcoming'

    def test_create_tournament_bad_date(self, client, seeded):
        response = client.post('/api/v1/tournaments', json={
            'name': 'Euro 2028', 'location': 'UK', 'start_date': 'June', 'end_date': 'July'
        }, headers=as_user(seeded['admin']))
        assert response.status_code == 400

    def test_stage_cannot_go_back(self, client, seeded):
        url = f"/api/v1/tournaments/{seeded['tournament']}/stage"
        assert client.post(url, json={'stage': 'semi_final'}, headers=as_user(seeded['admin'])).status_code == 200

        response = client.post(url, json={'stage': 'round_of_16'}, headers=as_user(seeded['admin']))
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'invalid_transition'

    def test_list_teams_and_matches(self, client, seeded):
        teams = json.loads(client.get(f"/api/v1/tournaments/{seeded['tournament']}/teams?active=true").data)
        assert [t['name'] for t in teams['teams']] == ['Brazil', 'Mexico']

        matches = json.loads(client.get(f"/api/v1/tournaments/{seeded['tournament']}/matches?round=group").data)
        assert [m['id'] for m in matches['matches']] == [seeded['match']]

    def test_stats(self, client, seeded):
        response = client.get('/api/v1/admin/stats', headers=as_user(seeded['admin']))
        assert response.status_code == 200
        assert json.loads(response.data)['user_count'] == 4

    def test_list_tournaments_paging(self, client, seeded):
        assert client.get('/api/v1/tournaments?offset=-1').status_code == 400
        assert client.get('/api/v1/tournaments?limit=0').status_code == 400

        data = json.loads(client.get('/api/v1/tournaments?limit=5000').data)
        assert data['count'] == 1

    def test_rename_tournament_group(self, client, seeded):
        url = f"/api/v1/tournament-groups/{seeded['bracket_group']}"
        response = client.patch(url, json={'name': 'Group Z'}, headers=as_user(seeded['admin']))
        assert response.status_code == 200
        assert json.loads(response.data)['name'] == 'Group Z'

        response = client.patch(url, json={'name': 'Group Y'}, headers=as_user(seeded['alice']))
        assert response.status_code == 403

    def test_update_team(self, client, seeded):
        url = f"/api/v1/teams/{seeded['home']}"
        response = client.patch(url, json={'group_points': 9}, headers=as_user(seeded['admin']))
        assert response.status_code == 200
        assert json.loads(response.data)['group_points'] == 9

        response = client.patch(url, json={'status': 'winner'}, headers=as_user(seeded['admin']))
        assert response.status_code == 400

    def test_update_match(self, client, seeded):
        url = f"/api/v1/matches/{seeded['match']}"
        response = client.patch(url, json={
            'stadium': 'Rose Bowl', 'match_datetime': '2026-06-12T20:00:00'
        }, headers=as_user(seeded['admin']))
        assert response.status_code == 200
        assert json.loads(response.data)['stadium'] == 'Rose Bowl'

        client.post(f"/api/v1/matches/{seeded['match']}/start", headers=as_user(seeded['admin']))
        response = client.patch(url, json={'stadium': 'Azteca'}, headers=as_user(seeded['admin']))
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'invalid_state'

    def test_second_crown_is_rejected(self, client, seeded):
        admin = as_user(seeded['admin'])
        assert client.post(f"/api/v1/teams/{seeded['home']}/crown", headers=admin).status_code == 200

        response = client.post(f"/api/v1/teams/{seeded['away']}/crown", headers=admin)
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'invalid_state'


class TestInitDbCommand:
    """Tests for the flask init-db command."""

    def test_seeds_admin_once(self, app, seeded):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['init-db', '--admin-email', 'Boss@Example.com', '--admin-name', 'Boss'])
        assert result.exit_code == 0
        assert 'Database initialized.' in result.output

        result = runner.invoke(args=['init-db', '--admin-email', 'boss@example.com'])
        assert result.exit_code == 0

        with app.app_context():
            admins = db.session.scalars(db.select(User).filter_by(email='boss@example.com')).all()
            assert len(admins) == 1
            assert admins[0].role == 'admin'
