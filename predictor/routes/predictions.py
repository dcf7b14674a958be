from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from . import json_body, query_int, require_int, require_str

bp = Blueprint('predictions', __name__)


@bp.route('/matches/<int:match_id>/prediction', methods=['PUT'])
@login_required
def upsert_match_prediction(match_id: int):
    data = json_body()
    prediction = current_app.predictions.upsert_match_prediction(
        current_user.id,
        match_id,
        require_int(data, 'team_a_score'),
        require_int(data, 'team_b_score'),
        penalty_pick=data.get('penalty_pick')
    )
    return jsonify(prediction.to_dict())


@bp.route('/tournaments/<int:tournament_id>/winner-predictions', methods=['PUT'])
@login_required
def upsert_winner_prediction(tournament_id: int):
    data = json_body()
    prediction = current_app.predictions.upsert_winner_prediction(
        current_user.id,
        tournament_id,
        require_str(data, 'round'),
        require_int(data, 'team_id')
    )
    return jsonify(prediction.to_dict())


@bp.route('/tournaments/<int:tournament_id>/predictions', methods=['GET'])
@login_required
def my_predictions(tournament_id: int):
    return jsonify({
        'tournament_id': tournament_id,
        'matches': current_app.predictions.list_match_predictions(current_user.id, tournament_id),
        'winners': current_app.predictions.list_winner_predictions(current_user.id, tournament_id)
    })


@bp.route('/tournaments/<int:tournament_id>/leaderboard', methods=['GET'])
def leaderboard(tournament_id: int):
    entries = current_app.leaderboard.get_leaderboard(tournament_id, limit=query_int('limit'))
    return jsonify({
        'tournament_id': tournament_id,
        'entries': entries,
        'count': len(entries)
    })


@bp.route('/tournaments/<int:tournament_id>/rank', methods=['GET'])
@login_required
def user_rank(tournament_id: int):
    """Rank of ?user_id=, or of the current user."""
    user_id = query_int('user_id', default=current_user.id)
    return jsonify(current_app.leaderboard.get_user_rank(tournament_id, user_id))


@bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify(current_user.to_dict())


@bp.route('/me', methods=['PATCH'])
@login_required
def update_me():
    user = current_app.accounts.update_profile(current_user.id, json_body())
    return jsonify(user.to_dict())
