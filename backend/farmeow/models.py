from farmeow import db
from datetime import datetime, timezone
import json


def _utcnow():
    return datetime.now(timezone.utc)


class VerifiedPlayer(db.Model):
    __tablename__ = 'verified_player'
    id = db.Column(db.Integer, primary_key=True)
    address = db.Column(db.String(42), unique=True, nullable=False, index=True)
    fid = db.Column(db.Integer, nullable=False, index=True)
    username = db.Column(db.String(64), nullable=True)
    pfp_url = db.Column(db.Text, nullable=True)
    follower_count = db.Column(db.Integer, default=0)
    registered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verify_tx_hash = db.Column(db.String(66), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'address': self.address,
            'fid': self.fid,
            'username': self.username,
            'pfpUrl': self.pfp_url,
            'followerCount': self.follower_count,
            'verifyTxHash': self.verify_tx_hash,
        }


class RoundRecord(db.Model):
    """Local record of one round's finalize sequence.

    status: pending -> finalized -> distributed

    A tx hash on a step that has not reached its status (finalize_tx_hash
    while pending, distribute_tx_hash while finalized) is a broadcast
    transaction whose receipt has not been seen yet.
    """
    __tablename__ = 'round_record'
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, unique=True, nullable=False, index=True)
    status = db.Column(db.String(16), default='pending', nullable=False)
    winners = db.Column(db.Text, nullable=True)  # JSON-encoded [{address, score}]
    finalize_tx_hash = db.Column(db.String(66), nullable=True)
    distribute_tx_hash = db.Column(db.String(66), nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    distributed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_distributed(self):
        return self.status == 'distributed'

    def winner_list(self):
        try:
            return json.loads(self.winners) if self.winners else []
        except ValueError:
            return []

    def to_dict(self):
        return {
            'roundId': self.round_id,
            'status': self.status,
            'winners': self.winner_list(),
            'finalizeTxHash': self.finalize_tx_hash,
            'distributeTxHash': self.distribute_tx_hash,
            'lastError': self.last_error,
            'attempts': self.attempts,
            'finalizedAt': self.finalized_at.isoformat() if self.finalized_at else None,
            'distributedAt': self.distributed_at.isoformat() if self.distributed_at else None,
        }
