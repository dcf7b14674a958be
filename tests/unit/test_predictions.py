"""
Unit tests for PredictionStore class.
Tests: upsert_match_prediction, upsert_winner_prediction, listings
"""
import pytest
from predictor.models import db, Match, MatchPrediction, Tournament, TournamentTeam, WinnerPrediction
from predictor.predictions import validate_score
from shared.errors import InvalidState, MatchLocked, NotFound, ValidationError
from shared.state_machine import MatchStatus, Round, TeamStatus


@pytest.fixture
def store(app, db_session):
    return app.predictions


def prediction_rows(model, **filters):
    return db.session.scalar(db.select(db.func.count(model.id)).filter_by(**filters))


class TestValidateScore:
    """Tests for validate_score."""

    def test_accepts_zero(self):
        assert validate_score(0, 'team_a_score') == 0

    def test_rejects_negative(self):
        with pytest.raises(ValidationError):
            validate_score(-1, 'team_a_score')

    def test_rejects_bool_and_str(self):
        with pytest.raises(ValidationError):
            validate_score(True, 'team_a_score')
        with pytest.raises(ValidationError):
            validate_score('2', 'team_a_score')


class TestUpsertMatchPrediction:
    """Tests for upsert_match_prediction method."""

    def test_create_prediction(self, store, sample_users, sample_match):
        """First submission should create a row."""
        prediction = store.upsert_match_prediction(sample_users[0].id, sample_match.id, 2, 1)

        assert prediction.team_a_score == 2
        assert prediction.team_b_score == 1
        assert prediction.penalty_pick is None

    def test_second_submission_updates(self, store, sample_users, sample_match):
        """Re-submitting should update the same row, never add a second one."""
        first = store.upsert_match_prediction(sample_users[0].id, sample_match.id, 2, 1)
        second = store.upsert_match_prediction(sample_users[0].id, sample_match.id, 0, 0)

        assert second.id == first.id
        assert (second.team_a_score, second.team_b_score) == (0, 0)
        assert prediction_rows(MatchPrediction, user_id=sample_users[0].id, match_id=sample_match.id) == 1

    def test_users_are_independent(self, store, sample_users, sample_match):
        """Each user gets their own row."""
        store.upsert_match_prediction(sample_users[0].id, sample_match.id, 2, 1)
        store.upsert_match_prediction(sample_users[1].id, sample_match.id, 1, 1)
        assert prediction_rows(MatchPrediction, match_id=sample_match.id) == 2

    def test_completed_match_is_locked(self, store, sample_users, sample_match):
        """Predictions close once the result is in."""
        match = db.session.get(Match, sample_match.id)
        match.status = MatchStatus.COMPLETED.value
        match.team_a_score = 1
        match.team_b_score = 0
        db.session.commit()

        with pytest.raises(MatchLocked) as exc_info:
            store.upsert_match_prediction(sample_users[0].id, sample_match.id, 2, 1)
        assert exc_info.value.code == 'match_locked'
        assert prediction_rows(MatchPrediction, match_id=sample_match.id) == 0

    def test_ongoing_match_still_open(self, store, sample_users, sample_match):
        """Predictions stay open until the match is completed."""
        db.session.get(Match, sample_match.id).status = MatchStatus.ONGOING.value
        db.session.commit()

        prediction = store.upsert_match_prediction(sample_users[0].id, sample_match.id, 1, 0)
        assert prediction.id is not None

    def test_negative_score_rejected(self, store, sample_users, sample_match):
        with pytest.raises(ValidationError):
            store.upsert_match_prediction(sample_users[0].id, sample_match.id, -1, 0)

    def test_unknown_match(self, store, sample_users):
        with pytest.raises(NotFound):
            store.upsert_match_prediction(sample_users[0].id, 9999, 1, 0)

    def test_penalty_pick_on_knockout(self, store, sample_users, knockout_match):
        """Knockout predictions may name a shoot-out winner."""
        prediction = store.upsert_match_prediction(
            sample_users[0].id, knockout_match.id, 1, 1, penalty_pick='team_b'
        )
        assert prediction.penalty_pick == 'team_b'

    def test_penalty_pick_on_group_match(self, store, sample_users, sample_match):
        """Group matches have no shoot-out."""
        with pytest.raises(ValidationError):
            store.upsert_match_prediction(sample_users[0].id, sample_match.id, 1, 1, penalty_pick='team_a')

    def test_penalty_pick_value(self, store, sample_users, knockout_match):
        with pytest.raises(ValidationError):
            store.upsert_match_prediction(sample_users[0].id, knockout_match.id, 1, 1, penalty_pick='home')


class TestUpsertWinnerPrediction:
    """Tests for upsert_winner_prediction method."""

    def test_create_and_update(self, store, sample_users, sample_tournament, sample_teams):
        """One row per (user, tournament, round); re-submitting swaps the team."""
        user_id = sample_users[0].id
        first = store.upsert_winner_prediction(user_id, sample_tournament.id, 'final', sample_teams[0].id)
        second = store.upsert_winner_prediction(user_id, sample_tournament.id, 'final', sample_teams[1].id)

        assert second.id == first.id
        assert second.tournament_team_id == sample_teams[1].id
        assert prediction_rows(WinnerPrediction, user_id=user_id, tournament_id=sample_tournament.id) == 1

    def test_unknown_round(self, store, sample_users, sample_tournament, sample_teams):
        with pytest.raises(ValidationError):
            store.upsert_winner_prediction(sample_users[0].id, sample_tournament.id, 'finals', sample_teams[0].id)

    def test_round_already_reached(self, store, sample_users, sample_tournament, sample_teams):
        """Rounds at or before the current stage are closed."""
        db.session.get(Tournament, sample_tournament.id).current_stage = Round.QUARTER_FINAL.value
        db.session.commit()

        with pytest.raises(InvalidState):
            store.upsert_winner_prediction(
                sample_users[0].id, sample_tournament.id, 'quarter_final', sample_teams[0].id
            )
        prediction = store.upsert_winner_prediction(
            sample_users[0].id, sample_tournament.id, 'semi_final', sample_teams[0].id
        )
        assert prediction.round == 'semi_final'

    def test_eliminated_team_rejected(self, store, sample_users, sample_tournament, sample_teams):
        db.session.get(TournamentTeam, sample_teams[0].id).status = TeamStatus.ELIMINATED.value
        db.session.commit()

        with pytest.raises(InvalidState):
            store.upsert_winner_prediction(sample_users[0].id, sample_tournament.id, 'final', sample_teams[0].id)

    def test_team_from_other_tournament(self, store, sample_users, sample_tournament, sample_teams):
        other = Tournament(
            name='Euro', slug='euro', location='Germany',
            start_date=sample_tournament.start_date, end_date=sample_tournament.end_date
        )
        db.session.add(other)
        db.session.commit()

        with pytest.raises(ValidationError):
            store.upsert_winner_prediction(sample_users[0].id, other.id, 'final', sample_teams[0].id)


class TestListings:
    """Tests for list_match_predictions and list_winner_predictions methods."""

    def test_list_match_predictions(self, store, sample_users, sample_match, knockout_match):
        """Listings include team details and follow kickoff order."""
        user_id = sample_users[0].id
        store.upsert_match_prediction(user_id, knockout_match.id, 0, 2)
        store.upsert_match_prediction(user_id, sample_match.id, 3, 1)

        listing = store.list_match_predictions(user_id, sample_match.tournament_id)

        assert [p['match_id'] for p in listing] == [sample_match.id, knockout_match.id]
        assert listing[0]['team_a_name'] == 'Brazil'
        assert listing[0]['team_b_name'] == 'Mexico'
        assert listing[1]['round'] == 'quarter_final'

    def test_list_winner_predictions_in_round_order(self, store, sample_users, sample_tournament, sample_teams):
        user_id = sample_users[0].id
        store.upsert_winner_prediction(user_id, sample_tournament.id, 'final', sample_teams[0].id)
        store.upsert_winner_prediction(user_id, sample_tournament.id, 'round_of_16', sample_teams[2].id)

        listing = store.list_winner_predictions(user_id, sample_tournament.id)

        assert [p['round'] for p in listing] == ['round_of_16', 'final']
        assert listing[0]['team_name'] == 'Japan'
