from flask import Blueprint, jsonify, current_app
from farmeow.api import get_payload, require_fields
from farmeow.context import get_identity
from farmeow.services.vault import to_checksum_address


auth = Blueprint('auth', __name__)


@auth.route('/verify-farcaster', methods=['POST'])
def verify_farcaster():
    """Look up the Farcaster profile bound to a wallet address."""
    data = get_payload()
    require_fields(data, 'address')
    address = to_checksum_address(data['address'])
    account = get_identity().lookup_by_address(address)
    return jsonify({'fid': account.fid, 'username': account.username, 'pfp_url': account.pfp_url})


@auth.route('/auth/url', methods=['POST'])
def auth_url():
    data = get_payload()
    require_fields(data, 'redirectUrl')
    url = get_identity().build_authorize_url(data['redirectUrl'], client_id=data.get('clientId'))
    return jsonify({'authUrl': url})


@auth.route('/auth/token', methods=['POST'])
def auth_token():
    data = get_payload()
    require_fields(data, 'code')
    user = get_identity().exchange_code(data['code'])
    current_app.logger.info(f"[auth] signed in fid={user['fid']}")
    return jsonify({'user': user})
