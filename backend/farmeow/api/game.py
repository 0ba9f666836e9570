from flask import Blueprint, jsonify, current_app
from farmeow import db, socketio
from farmeow.api import get_payload, int_field, require_fields
from farmeow.context import get_identity, get_ledger, get_round_controller, get_vault
from farmeow.errors import ValidationError
from farmeow.models import VerifiedPlayer
from farmeow.services.identity import verify_farcaster_account
from farmeow.services.rounds import StaleRoundError
from farmeow.services.vault import compute_commitment, to_bytes32, to_checksum_address


game = Blueprint('game', __name__)


def leaderboard_rows(limit):
    entries = get_ledger().top_n(limit)
    addresses = [e.address for e in entries]
    known = {}
    if addresses:
        known = {p.address: p for p in VerifiedPlayer.query.filter(VerifiedPlayer.address.in_(addresses)).all()}
    rows = []
    for idx, entry in enumerate(entries):
        player = known.get(entry.address)
        rows.append({
            'rank': idx + 1,
            'address': entry.address,
            'score': entry.score,
            'fid': entry.fid,
            'username': player.username if player and player.username else f'Player{idx + 1}',
            'pfpUrl': player.pfp_url if player else None,
        })
    return rows


@game.route('/verify-player', methods=['POST'])
def verify_player():
    data = get_payload()
    require_fields(data, 'fid', 'address')
    fid = int_field(data, 'fid', minimum=1)
    address = to_checksum_address(data['address'])
    cfg = current_app.config

    account = verify_farcaster_account(
        get_identity(),
        fid,
        min_account_age_days=int(cfg.get('MIN_ACCOUNT_AGE_DAYS', 7)),
        min_follower_count=int(cfg.get('MIN_FOLLOWER_COUNT', 5)),
    )
    result = get_vault().verify_player(address, fid)

    player = VerifiedPlayer.query.filter_by(address=address).first()
    if not player:
        player = VerifiedPlayer(address=address)
    player.fid = fid
    player.username = account.username
    player.pfp_url = account.pfp_url
    player.follower_count = account.follower_count
    player.registered_at = account.registered_at
    player.verify_tx_hash = result.tx_hash
    db.session.add(player)
    db.session.commit()
    current_app.logger.info(f"[verify-player] fid={fid} address={address} tx={result.tx_hash}")
    return jsonify({'success': True, 'player': player.to_dict(), 'txHash': result.tx_hash})


@game.route('/submit-score', methods=['POST'])
def submit_score():
    data = get_payload()
    require_fields(data, 'fid', 'address', 'score', 'secret')
    fid = int_field(data, 'fid', minimum=1)
    address = to_checksum_address(data['address'])
    score = int_field(data, 'score', minimum=0)
    secret = to_bytes32(data['secret'], 'secret')
    round_id = int_field(data, 'roundId') if data.get('roundId') is not None else None

    commitment = compute_commitment(address, score, secret)
    claimed = data.get('commitment')
    if claimed and str(claimed).lower() != commitment.lower():
        raise ValidationError('commitment does not match address, score and secret', field='commitment')

    controller = get_round_controller()
    vault = get_vault()
    state = controller.current_round()
    controller.ensure_accepting_scores(state, round_id)

    # Reveal only after the commit is mined; the optional pause is a deterrent, not a guarantee
    commit = vault.commit_score(to_bytes32(commitment, 'commitment'))
    delay = float(current_app.config.get('COMMIT_REVEAL_DELAY_SEC', 0) or 0)
    if delay > 0:
        socketio.sleep(delay)
    reveal = vault.submit_score(address, score, secret)

    ledger = controller.ledger
    try:
        entry = ledger.record_score(address, score, fid, round_id=state.round_id)
    except StaleRoundError:
        # the round settled while the commit and reveal were confirming
        raise ValidationError(
            f'round {state.round_id} closed before the score was recorded',
            roundId=state.round_id,
            txHash=reveal.tx_hash,
        )
    rank = ledger.rank_of(address)
    current_app.logger.info(
        f"[submit-score] round={state.round_id} address={address} score={score} best={entry.score} rank={rank}"
    )
    socketio.emit(
        'leaderboard_update',
        {'players': leaderboard_rows(int(current_app.config.get('LEADERBOARD_SIZE', 20)))},
        to='leaderboard',
        namespace='/ws',
    )
    return jsonify({
        'success': True,
        'rank': rank,
        'score': entry.score,
        'roundId': state.round_id,
        'commitTxHash': commit.tx_hash,
        'txHash': reveal.tx_hash,
    })


@game.route('/live-rank', methods=['POST'])
def live_rank():
    data = get_payload()
    require_fields(data, 'score')
    score = int_field(data, 'score', minimum=0)
    ledger = get_ledger()
    return jsonify({'rank': ledger.rank_for_score(score), 'score': score, 'totalPlayers': len(ledger)})


@game.route('/leaderboard', methods=['GET'])
def leaderboard():
    limit = int(current_app.config.get('LEADERBOARD_SIZE', 20))
    return jsonify({'players': leaderboard_rows(limit), 'totalPlayers': len(get_ledger())})


@game.route('/vault-info', methods=['GET'])
def vault_info():
    controller = get_round_controller()
    state = controller.current_round()
    payload = state.to_dict(decimals=int(current_app.config.get('VAULT_TOKEN_DECIMALS', 6)))
    payload['finalizing'] = controller.is_finalizing
    return jsonify(payload)
