from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from . import json_body, optional_int, query_int, require_datetime, require_int, require_str

bp = Blueprint('admin', __name__)


# ==================== Tournaments ====================

@bp.route('/tournaments', methods=['GET'])
def list_tournaments():
    tournaments = current_app.registry.list_tournaments(
        status=request.args.get('status'),
        limit=query_int('limit'),
        offset=query_int('offset', default=0)
    )
    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments)
    })


@bp.route('/tournaments', methods=['POST'])
@login_required
def create_tournament():
    data = json_body()
    tournament = current_app.registry.create_tournament(
        current_user,
        require_str(data, 'name'),
        require_str(data, 'location'),
        require_datetime(data, 'start_date'),
        require_datetime(data, 'end_date'),
        slug=data.get('slug')
    )
    return jsonify(tournament.to_dict()), 201


@bp.route('/tournaments/latest', methods=['GET'])
def latest_tournament():
    tournament = current_app.registry.get_latest_tournament()
    return jsonify({'tournament': tournament.to_dict() if tournament else None})


@bp.route('/tournaments/<int:tournament_id>', methods=['GET'])
def get_tournament(tournament_id: int):
    return jsonify(current_app.registry.get_tournament(tournament_id).to_dict())


@bp.route('/tournaments/<int:tournament_id>/status', methods=['POST'])
@login_required
def update_tournament_status(tournament_id: int):
    """Body: {"action": "start" | "complete"}"""
    tournament = current_app.registry.update_tournament_status(
        current_user, tournament_id, require_str(json_body(), 'action')
    )
    return jsonify(tournament.to_dict())


@bp.route('/tournaments/<int:tournament_id>/stage', methods=['POST'])
@login_required
def advance_stage(tournament_id: int):
    tournament = current_app.registry.advance_stage(
        current_user, tournament_id, require_str(json_body(), 'stage')
    )
    return jsonify(tournament.to_dict())


@bp.route('/tournaments/<int:tournament_id>/rescore', methods=['POST'])
@login_required
def rescore_tournament(tournament_id: int):
    totals = current_app.registry.rescore_tournament(current_user, tournament_id)
    return jsonify({'tournament_id': tournament_id, 'users_rescored': len(totals)})


# ==================== Bracket groups & teams ====================

@bp.route('/tournaments/<int:tournament_id>/groups', methods=['GET'])
def list_tournament_groups(tournament_id: int):
    groups = current_app.registry.list_tournament_groups(tournament_id)
    return jsonify({'groups': [g.to_dict() for g in groups]})


@bp.route('/tournaments/<int:tournament_id>/groups', methods=['POST'])
@login_required
def create_tournament_group(tournament_id: int):
    group = current_app.registry.create_tournament_group(
        current_user, tournament_id, require_str(json_body(), 'name')
    )
    return jsonify(group.to_dict()), 201


@bp.route('/tournament-groups/<int:tournament_group_id>', methods=['PATCH'])
@login_required
def rename_tournament_group(tournament_group_id: int):
    group = current_app.registry.rename_tournament_group(
        current_user, tournament_group_id, require_str(json_body(), 'name')
    )
    return jsonify(group.to_dict())


@bp.route('/tournaments/<int:tournament_id>/teams', methods=['GET'])
def list_teams(tournament_id: int):
    active_only = request.args.get('active', '').lower() in ('1', 'true', 'yes')
    teams = current_app.registry.list_teams(tournament_id, active_only=active_only)
    return jsonify({'teams': [t.to_dict() for t in teams]})


@bp.route('/tournaments/<int:tournament_id>/teams', methods=['POST'])
@login_required
def create_team(tournament_id: int):
    data = json_body()
    team = current_app.registry.create_team(
        current_user,
        tournament_id,
        require_int(data, 'tournament_group_id'),
        require_str(data, 'name'),
        require_str(data, 'flag')
    )
    return jsonify(team.to_dict()), 201


@bp.route('/teams/<int:team_id>', methods=['PATCH'])
@login_required
def update_team(team_id: int):
    """Body: any of {"name", "flag", "group_points"}"""
    team = current_app.registry.update_team(current_user, team_id, json_body())
    return jsonify(team.to_dict())


@bp.route('/teams/<int:team_id>/eliminate', methods=['POST'])
@login_required
def eliminate_team(team_id: int):
    return jsonify(current_app.registry.eliminate_team(current_user, team_id).to_dict())


@bp.route('/teams/<int:team_id>/crown', methods=['POST'])
@login_required
def crown_winner(team_id: int):
    return jsonify(current_app.registry.crown_winner(current_user, team_id).to_dict())


# ==================== Matches ====================

@bp.route('/tournaments/<int:tournament_id>/matches', methods=['GET'])
def list_matches(tournament_id: int):
    matches = current_app.registry.list_matches(tournament_id, round_name=request.args.get('round'))
    return jsonify({'matches': [m.to_dict() for m in matches]})


@bp.route('/tournaments/<int:tournament_id>/matches', methods=['POST'])
@login_required
def create_match(tournament_id: int):
    data = json_body()
    match = current_app.registry.create_match(
        current_user,
        tournament_id,
        require_int(data, 'team_a_id'),
        require_int(data, 'team_b_id'),
        require_str(data, 'stadium'),
        require_datetime(data, 'match_datetime'),
        require_str(data, 'round')
    )
    return jsonify(match.to_dict()), 201


@bp.route('/matches/<int:match_id>', methods=['PATCH'])
@login_required
def update_match(match_id: int):
    data = json_body()
    match = current_app.registry.update_match(
        current_user,
        match_id,
        stadium=require_str(data, 'stadium') if 'stadium' in data else None,
        match_datetime=require_datetime(data, 'match_datetime') if 'match_datetime' in data else None
    )
    return jsonify(match.to_dict())


@bp.route('/matches/<int:match_id>/start', methods=['POST'])
@login_required
def start_match(match_id: int):
    return jsonify(current_app.registry.start_match(current_user, match_id).to_dict())


@bp.route('/matches/<int:match_id>/result', methods=['POST'])
@login_required
def complete_match(match_id: int):
    data = json_body()
    match = current_app.registry.complete_match(
        current_user,
        match_id,
        require_int(data, 'team_a_score'),
        require_int(data, 'team_b_score'),
        penalty_winner_id=optional_int(data, 'penalty_winner_id')
    )
    return jsonify(match.to_dict())


@bp.route('/admin/stats', methods=['GET'])
@login_required
def dashboard_stats():
    return jsonify(current_app.registry.dashboard_stats(current_user))
