from dataclasses import replace

import pytest

from farmeow import db
from farmeow.errors import ContractCallError, UpstreamError, ValidationError
from farmeow.models import RoundRecord
from farmeow.services.rounds import RoundController
from fakes import ADDR_A, ADDR_B, ADDR_C


def _seed(controller):
    controller.ledger.record_score(ADDR_A, 500, fid=1)
    controller.ledger.record_score(ADDR_B, 300, fid=2)
    controller.ledger.record_score(ADDR_C, 300, fid=3)


def test_open_round_does_nothing(controller, vault):
    _seed(controller)
    assert controller.check_round() == 'open'
    assert vault.names() == ['getCurrentRound']
    assert len(controller.ledger) == 3
    assert controller.last_state.round_id == 1


def test_closed_round_is_finalized_distributed_and_cleared(controller, vault):
    _seed(controller)
    vault.close_round()

    assert controller.check_round() == 'settled'

    assert vault.names() == ['getCurrentRound', 'finalizeRoundWithTopPlayers', 'batchDistributePrizes']
    _, (addresses, scores) = vault.calls[1]
    assert addresses == [ADDR_A, ADDR_B, ADDR_C]
    assert scores == [500, 300, 300]
    assert vault.calls[2][1] == (1,)
    assert len(controller.ledger) == 0

    record = RoundRecord.query.filter_by(round_id=1).one()
    assert record.status == 'distributed'
    assert record.attempts == 1
    assert record.finalize_tx_hash and record.distribute_tx_hash
    assert [w['address'] for w in record.winner_list()] == [ADDR_A, ADDR_B, ADDR_C]


def test_only_top_prize_pool_is_submitted(controller, vault):
    for i in range(25):
        controller.ledger.record_score(f'0x{i:040x}', i * 10)
    vault.close_round()
    controller.check_round()
    _, (addresses, scores) = vault.calls[1]
    assert len(addresses) == 20
    assert scores[0] == 240
    assert scores == sorted(scores, reverse=True)


def test_distribute_failure_keeps_ledger_and_retry_skips_finalize(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.fail_next('batchDistributePrizes', ContractCallError('execution reverted', function='batchDistributePrizes'))

    assert controller.check_round() == 'failed'
    assert len(controller.ledger) == 3
    record = RoundRecord.query.filter_by(round_id=1).one()
    assert record.status == 'finalized'
    assert 'execution reverted' in record.last_error

    assert controller.check_round() == 'settled'
    assert vault.names().count('finalizeRoundWithTopPlayers') == 1
    assert vault.names().count('batchDistributePrizes') == 2
    assert len(controller.ledger) == 0
    # check_round commits from its own app context
    db.session.expire_all()
    record = RoundRecord.query.filter_by(round_id=1).one()
    assert record.status == 'distributed'
    assert record.last_error is None
    assert record.attempts == 2


def test_local_record_prevents_second_finalize_when_chain_lags(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.fail_next('batchDistributePrizes', ContractCallError('timeout', function='batchDistributePrizes'))
    controller.check_round()
    # RPC node still reports the round as not finalized
    vault.round = replace(vault.round, finalized=False)
    assert controller.check_round() == 'settled'
    assert vault.names().count('finalizeRoundWithTopPlayers') == 1


def test_finalize_failure_leaves_everything_for_next_poll(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.fail_next('finalizeRoundWithTopPlayers', ContractCallError('nonce too low', function='finalizeRoundWithTopPlayers'))

    assert controller.check_round() == 'failed'
    assert 'batchDistributePrizes' not in vault.names()
    assert len(controller.ledger) == 3
    assert RoundRecord.query.filter_by(round_id=1).one().status == 'pending'

    assert controller.check_round() == 'settled'
    assert vault.names().count('finalizeRoundWithTopPlayers') == 2


def test_round_finalized_elsewhere_is_only_distributed(controller, vault):
    _seed(controller)
    vault.round = replace(vault.round, time_remaining=0, finalized=True)
    assert controller.check_round() == 'settled'
    assert 'finalizeRoundWithTopPlayers' not in vault.names()
    assert vault.names().count('batchDistributePrizes') == 1


def test_distributed_round_is_not_rerun(controller, vault):
    _seed(controller)
    vault.close_round()
    controller.check_round()
    controller.ledger.record_score(ADDR_A, 10)
    assert controller.check_round() == 'skipped'
    assert vault.names().count('batchDistributePrizes') == 1
    assert len(controller.ledger) == 1


def test_read_failure_is_reported_not_raised(controller, vault):
    _seed(controller)
    vault.fail_next('getCurrentRound', UpstreamError('rpc down'))
    assert controller.check_round() == 'failed'
    assert len(controller.ledger) == 3


def test_concurrent_check_is_skipped(controller, vault):
    vault.close_round()
    controller._sequence_lock.acquire()
    try:
        assert controller.check_round() == 'busy'
    finally:
        controller._sequence_lock.release()
    assert vault.calls == []


def test_missing_vault_fails_cleanly(flask_app):
    controller = RoundController(flask_app, None)
    assert controller.check_round() == 'failed'
    with pytest.raises(UpstreamError):
        controller.current_round()


def test_ensure_accepting_scores(controller, vault):
    state = controller.current_round()
    controller.ensure_accepting_scores(state, 1)
    with pytest.raises(ValidationError):
        controller.ensure_accepting_scores(state, 2)
    with pytest.raises(ValidationError):
        controller.ensure_accepting_scores(replace(state, time_remaining=0))
    with pytest.raises(ValidationError):
        controller.ensure_accepting_scores(replace(state, finalized=True))
    controller._finalizing = True
    try:
        with pytest.raises(ValidationError):
            controller.ensure_accepting_scores(state)
    finally:
        controller._finalizing = False


def test_status_reports_last_read(controller, vault):
    controller.check_round()
    status = controller.status()
    assert status['round']['roundId'] == 1
    assert status['finalizing'] is False
    assert status['ledgerSize'] == 0
    assert status['lastCheckedAt'] is not None


def _record(round_id=1):
    # check_round commits from its own app context
    db.session.expire_all()
    return RoundRecord.query.filter_by(round_id=round_id).one()


def _finalize_calls(vault):
    return [args for name, args in vault.calls if name == 'finalizeRoundWithTopPlayers']


def test_unconfirmed_finalize_is_not_resent_while_pending(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.stall_next('finalizeRoundWithTopPlayers')

    assert controller.check_round() == 'failed'
    tx_hash = _record().finalize_tx_hash
    assert tx_hash is not None
    assert _record().status == 'pending'
    assert len(controller.ledger) == 3

    assert controller.check_round() == 'waiting'
    assert controller.check_round() == 'waiting'
    assert len(_finalize_calls(vault)) == 1
    assert 'batchDistributePrizes' not in vault.names()
    assert vault.names().count('getReceipt') == 2

    vault.mine(tx_hash)
    # RPC node has the receipt but still reports the round as not finalized
    vault.round = replace(vault.round, finalized=False)
    assert controller.check_round() == 'settled'
    assert len(_finalize_calls(vault)) == 1
    assert vault.names().count('batchDistributePrizes') == 1
    assert _record().status == 'distributed'
    assert _record().finalize_tx_hash == tx_hash
    assert len(controller.ledger) == 0


def test_reverted_pending_finalize_is_sent_again(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.stall_next('finalizeRoundWithTopPlayers')
    controller.check_round()
    vault.drop(_record().finalize_tx_hash)

    assert controller.check_round() == 'settled'
    assert len(_finalize_calls(vault)) == 2


def test_unconfirmed_distribute_is_not_resent_while_pending(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.stall_next('batchDistributePrizes')

    assert controller.check_round() == 'failed'
    record = _record()
    assert record.status == 'finalized'
    assert record.distribute_tx_hash is not None

    assert controller.check_round() == 'waiting'
    assert vault.names().count('batchDistributePrizes') == 1

    vault.mine(record.distribute_tx_hash)
    assert controller.check_round() == 'settled'
    assert vault.names().count('batchDistributePrizes') == 1
    assert len(_finalize_calls(vault)) == 1


def test_rollover_after_late_distribute_drops_old_scores(controller, vault):
    _seed(controller)
    vault.close_round()
    vault.stall_next('batchDistributePrizes')
    assert controller.check_round() == 'failed'
    assert len(controller.ledger) == 3

    # the distribute is mined later and the contract opens round 2
    vault.mine(_record().distribute_tx_hash)
    vault.roll_round()
    assert controller.check_round() == 'open'
    assert len(controller.ledger) == 0
    assert controller.ledger.round_id == 2

    controller.ledger.record_score(ADDR_C, 50, fid=3, round_id=2)
    vault.round = replace(vault.round, total_players=1, time_remaining=0)
    assert controller.check_round() == 'settled'
    assert _finalize_calls(vault)[-1] == ([ADDR_C], [50])


def test_score_for_newer_round_replaces_old_entries(controller, vault):
    _seed(controller)
    controller.check_round()
    assert controller.ledger.round_id == 1
    controller.ledger.record_score(ADDR_C, 5, round_id=2)
    assert [e.address for e in controller.ledger.snapshot()] == [ADDR_C]


def test_empty_ledger_refuses_to_finalize_counted_players(controller, vault):
    vault.round = replace(vault.round, total_players=2, time_remaining=0)
    assert controller.check_round() == 'failed'
    assert _finalize_calls(vault) == []
    record = _record()
    assert record.status == 'pending'
    assert 'refusing to finalize' in record.last_error


def test_empty_round_is_finalized_without_winners(controller, vault):
    vault.close_round()
    assert controller.check_round() == 'settled'
    assert _finalize_calls(vault) == [([], [])]


def test_read_behind_the_ledger_round_is_skipped(controller, vault):
    controller.ledger.record_score(ADDR_A, 10, round_id=2)
    vault.close_round()
    assert controller.check_round() == 'skipped'
    assert _finalize_calls(vault) == []
    assert len(controller.ledger) == 1


def test_settled_round_stops_accepting_scores(controller, vault):
    _seed(controller)
    vault.close_round()
    controller.check_round()
    reopened = replace(vault.round, time_remaining=3600, finalized=False)
    with pytest.raises(ValidationError):
        controller.ensure_accepting_scores(reopened)
