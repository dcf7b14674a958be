from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from . import json_body, query_int, require_int, require_str

bp = Blueprint('groups', __name__)


def _group_payload(group, user_id: int) -> dict:
    payload = group.to_dict()
    payload['is_admin'] = group.admin_id == user_id
    return payload


@bp.route('/groups', methods=['GET'])
@login_required
def list_my_groups():
    """Groups the current user belongs to, optionally within one tournament."""
    groups = current_app.groups.list_groups_for_user(
        current_user.id,
        tournament_id=query_int('tournament_id')
    )
    return jsonify({
        'groups': [_group_payload(g, current_user.id) for g in groups],
        'count': len(groups)
    })


@bp.route('/groups', methods=['POST'])
@login_required
def create_group():
    data = json_body()
    group = current_app.groups.create_group(
        current_user.id,
        require_int(data, 'tournament_id'),
        require_str(data, 'name')
    )
    return jsonify({
        'message': 'Group created',
        'group': _group_payload(group, current_user.id),
        'invite_code': group.invite.code
    }), 201


@bp.route('/groups/<int:group_id>', methods=['GET'])
@login_required
def get_group(group_id: int):
    group = current_app.groups.get_group(group_id)
    members = current_app.groups.list_members(group_id)
    payload = _group_payload(group, current_user.id)
    payload['tournament'] = group.tournament.to_dict()
    payload['members'] = [{'id': m.id, 'name': m.name, 'image': m.image} for m in members]
    return jsonify(payload)


@bp.route('/groups/<int:group_id>', methods=['PATCH'])
@login_required
def rename_group(group_id: int):
    group = current_app.groups.rename_group(group_id, current_user.id, require_str(json_body(), 'name'))
    return jsonify(_group_payload(group, current_user.id))


@bp.route('/groups/<int:group_id>', methods=['DELETE'])
@login_required
def delete_group(group_id: int):
    current_app.groups.delete_group(group_id, current_user.id)
    return jsonify({'message': 'Group deleted'})


@bp.route('/groups/join', methods=['POST'])
@login_required
def join_group():
    group = current_app.groups.join_group(require_str(json_body(), 'code'), current_user.id)
    return jsonify({
        'message': 'Joined group',
        'group': _group_payload(group, current_user.id)
    })


@bp.route('/invites/<code>', methods=['GET'])
def preview_invite(code: str):
    """Public preview of the group behind an invite code."""
    return jsonify(current_app.groups.preview_group_by_code(code))


@bp.route('/groups/<int:group_id>/leave', methods=['POST'])
@login_required
def leave_group(group_id: int):
    current_app.groups.leave_group(group_id, current_user.id)
    return jsonify({'message': 'Left group'})


@bp.route('/groups/<int:group_id>/members/<int:user_id>', methods=['DELETE'])
@login_required
def remove_member(group_id: int, user_id: int):
    current_app.groups.remove_member(group_id, current_user.id, user_id)
    return jsonify({'message': 'Member removed'})


@bp.route('/groups/<int:group_id>/invite', methods=['GET'])
@login_required
def get_invite(group_id: int):
    invite = current_app.groups.get_invite_code(group_id, current_user.id)
    return jsonify(invite.to_dict())


@bp.route('/groups/<int:group_id>/invite/rotate', methods=['POST'])
@login_required
def rotate_invite(group_id: int):
    invite = current_app.groups.rotate_invite_code(group_id, current_user.id)
    return jsonify(invite.to_dict())


@bp.route('/groups/<int:group_id>/standings', methods=['GET'])
@login_required
def group_standings(group_id: int):
    standings = current_app.leaderboard.get_group_standings(group_id)
    return jsonify({'group_id': group_id, 'standings': standings})
