import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from farmeow import db, socketio
from farmeow.errors import ConflictError, ContractCallError, FarMeowError, UpstreamError, ValidationError
from farmeow.models import RoundRecord
from .ledger import ScoreLedger


class RoundController:
    """Owns the active round's ledger and settles the round on-chain.

    Settling is finalize (lock in the top N) then distribute (pay out). Each
    sub-step is skipped when it is already done: finalize when the contract
    reports the round finalized, distribute when the RoundRecord says so.
    A transaction that was broadcast but never confirmed is kept on the
    record and its receipt is checked before anything is re-sent.
    A failure leaves the ledger as it was and the next check retries.
    """

    def __init__(self, app, vault, ledger: Optional[ScoreLedger] = None, prize_pool_size: int = 20):
        self.app = app
        self.vault = vault
        self.ledger = ledger if ledger is not None else ScoreLedger()
        self.prize_pool_size = prize_pool_size
        self.last_state = None
        self.last_checked_at: Optional[float] = None
        self._sequence_lock = threading.Lock()
        self._finalizing = False

    @property
    def is_finalizing(self) -> bool:
        return self._finalizing

    def require_vault(self):
        if self.vault is None:
            raise UpstreamError('vault contract is not configured')
        return self.vault

    def current_round(self):
        state = self.require_vault().get_current_round()
        self.last_state = state
        return state

    def ensure_accepting_scores(self, state, round_id: Optional[int] = None) -> None:
        if self._finalizing:
            raise ValidationError('round is being finalized', roundId=state.round_id)
        if not state.accepting_scores or self.ledger.is_closed(state.round_id):
            raise ValidationError('round is closed', roundId=state.round_id)
        if round_id is not None and int(round_id) != state.round_id:
            raise ValidationError('roundId does not match the current round', roundId=state.round_id)

    def check_round(self) -> str:
        """One poll of the contract.

        Returns open, busy, waiting, settled, skipped or failed.
        """
        if not self._sequence_lock.acquire(blocking=False):
            self.app.logger.info("[round-skip] finalize sequence already running")
            return 'busy'
        try:
            with self.app.app_context():
                try:
                    state = self.current_round()
                except FarMeowError as exc:
                    self.app.logger.error(f"[round-check] read failed: {exc}")
                    return 'failed'
                finally:
                    self.last_checked_at = time.time()

                ledger_round = self.ledger.round_id
                if ledger_round is not None and state.round_id < ledger_round:
                    self.app.logger.info(
                        f"[round-skip] stale read round={state.round_id} ledger_round={ledger_round}"
                    )
                    return 'skipped'
                dropped = self.ledger.open_round(state.round_id)
                if dropped:
                    self.app.logger.info(
                        f"[round-rollover] round={state.round_id} dropped={dropped} entries from round {ledger_round}"
                    )

                if not state.is_over:
                    self.app.logger.debug(
                        f"[round-check] round={state.round_id} remaining={state.time_remaining}s players={len(self.ledger)}"
                    )
                    return 'open'
                return self._settle(state)
        finally:
            self._sequence_lock.release()

    def _record_for(self, round_id: int) -> RoundRecord:
        record = RoundRecord.query.filter_by(round_id=round_id).first()
        if not record:
            record = RoundRecord(round_id=round_id, status='pending', attempts=0)
            db.session.add(record)
            db.session.commit()
        return record

    def _settle(self, state) -> str:
        record = self._record_for(state.round_id)
        if record.is_distributed:
            self.app.logger.debug(f"[round-skip] round={state.round_id} already distributed")
            return 'skipped'

        self._finalizing = True
        record.attempts = (record.attempts or 0) + 1
        try:
            outcome = self._run_sequence(state, record)
        except FarMeowError as exc:
            record.last_error = str(exc)
            db.session.add(record)
            db.session.commit()
            self.app.logger.error(
                f"[round-failed] round={state.round_id} status={record.status} attempt={record.attempts} error={exc}"
            )
            return 'failed'
        finally:
            self._finalizing = False

        db.session.add(record)
        db.session.commit()
        if outcome != 'settled':
            return outcome

        self.ledger.close_round(state.round_id)
        socketio.emit('round_finalized', record.to_dict(), to='leaderboard', namespace='/ws')
        return 'settled'

    def _run_sequence(self, state, record) -> str:
        if record.status == 'pending':
            mined = None
            if record.finalize_tx_hash and not state.finalized:
                mined = self._check_pending(state.round_id, 'finalize', record.finalize_tx_hash)
                if mined is None:
                    return 'waiting'
                if not mined:
                    record.finalize_tx_hash = None
            if state.finalized or mined:
                self.app.logger.info(
                    f"[round-finalize-skip] round={state.round_id} onchain={state.finalized} tx={record.finalize_tx_hash}"
                )
                record.status = 'finalized'
                record.finalized_at = datetime.now(timezone.utc)
            else:
                self._finalize(state, record)
        else:
            self.app.logger.info(f"[round-finalize-skip] round={state.round_id} local={record.status}")

        mined = None
        if record.distribute_tx_hash:
            mined = self._check_pending(state.round_id, 'distribute', record.distribute_tx_hash)
            if mined is None:
                return 'waiting'
            if not mined:
                record.distribute_tx_hash = None
        if not mined:
            self._distribute(state, record)

        record.status = 'distributed'
        record.distributed_at = datetime.now(timezone.utc)
        record.last_error = None
        self.app.logger.info(f"[round-distributed] round={state.round_id} tx={record.distribute_tx_hash}")
        return 'settled'

    def _finalize(self, state, record) -> None:
        winners = self.ledger.top_n(self.prize_pool_size)
        if not winners and state.total_players > 0:
            # this process never saw the round's scores (restart or separate CLI process)
            raise ConflictError(
                f'ledger is empty but the contract counts {state.total_players} players; refusing to finalize',
                roundId=state.round_id,
            )
        record.winners = json.dumps([{'address': w.address, 'score': w.score} for w in winners])
        self.app.logger.info(f"[round-finalize] round={state.round_id} winners={len(winners)}")
        try:
            result = self.vault.finalize_round_with_top_players(
                [w.address for w in winners], [w.score for w in winners]
            )
        except ContractCallError as exc:
            if exc.pending:
                record.finalize_tx_hash = exc.tx_hash
            raise
        record.status = 'finalized'
        record.finalize_tx_hash = result.tx_hash
        record.finalized_at = datetime.now(timezone.utc)
        db.session.add(record)
        db.session.commit()
        self.app.logger.info(f"[round-finalized] round={state.round_id} tx={result.tx_hash}")

    def _distribute(self, state, record) -> None:
        try:
            result = self.vault.batch_distribute_prizes(state.round_id)
        except ContractCallError as exc:
            if exc.pending:
                record.distribute_tx_hash = exc.tx_hash
            raise
        record.distribute_tx_hash = result.tx_hash

    def _check_pending(self, round_id: int, step: str, tx_hash: str) -> Optional[bool]:
        """True once mined, False if it reverted, None while unconfirmed."""
        try:
            receipt = self.vault.get_receipt(tx_hash)
        except ContractCallError as exc:
            self.app.logger.error(f"[round-{step}-reverted] round={round_id} tx={tx_hash} error={exc}")
            return False
        if receipt is None:
            self.app.logger.info(f"[round-{step}-waiting] round={round_id} tx={tx_hash}")
            return None
        self.app.logger.info(f"[round-{step}-confirmed] round={round_id} tx={tx_hash}")
        return True

    def status(self) -> Dict[str, Any]:
        state = self.last_state
        return {
            'round': state.to_dict() if state else None,
            'finalizing': self._finalizing,
            'ledgerRound': self.ledger.round_id,
            'ledgerSize': len(self.ledger),
            'lastCheckedAt': self.last_checked_at,
        }
