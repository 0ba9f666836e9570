import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional


class StaleRoundError(ValueError):
    """A score arrived for a round the ledger has already moved past."""


@dataclass
class ScoreEntry:
    address: str
    score: int
    fid: Optional[int] = None

    def to_dict(self) -> dict:
        return {'address': self.address, 'score': self.score, 'fid': self.fid}


class ScoreLedger:
    """Best score per address for the active round.

    Every call takes the same lock, so request handlers and the round
    controller never observe a half-applied update. The full ledger is
    re-sorted after each write (O(n log n)); fine for one round's players,
    not for an unbounded table.

    Ties keep the order in which addresses first entered the ledger, not
    the order in which they reached the score.

    The ledger belongs to one round. Seeing a newer round id drops every
    entry; once a round is closed, writes for it or any older round raise
    ``StaleRoundError``. An unbound ledger adopts the first round it sees.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, ScoreEntry] = {}
        self._sorted: List[ScoreEntry] = []
        self._round_id: Optional[int] = None
        self._closed = False

    @property
    def round_id(self) -> Optional[int]:
        return self._round_id

    def is_closed(self, round_id: int) -> bool:
        with self._lock:
            return self._is_stale(round_id)

    def _is_stale(self, round_id: int) -> bool:
        if self._round_id is None:
            return False
        return round_id < self._round_id or (round_id == self._round_id and self._closed)

    def open_round(self, round_id: int) -> int:
        """Bind to ``round_id`` if it is newer; returns how many entries were dropped."""
        with self._lock:
            if self._round_id is not None and round_id <= self._round_id:
                return 0
            dropped = 0
            if self._round_id is not None:
                dropped = len(self._entries)
                self._reset()
            self._round_id = round_id
            self._closed = False
            return dropped

    def close_round(self, round_id: int) -> None:
        """Clear the ledger and refuse further scores for ``round_id``."""
        with self._lock:
            if self._round_id is not None and round_id < self._round_id:
                return
            self._reset()
            self._round_id = round_id
            self._closed = True

    def record_score(
        self, address: str, score: int, fid: Optional[int] = None, round_id: Optional[int] = None
    ) -> ScoreEntry:
        if score < 0:
            raise ValueError('score must be non-negative')
        with self._lock:
            if round_id is not None:
                if self._is_stale(round_id):
                    raise StaleRoundError(f'round {round_id} is already closed')
                if self._round_id is None or round_id > self._round_id:
                    if self._round_id is not None:
                        self._reset()
                    self._round_id = round_id
                    self._closed = False
            entry = self._entries.get(address)
            if entry is None:
                entry = ScoreEntry(address=address, score=score, fid=fid)
                self._entries[address] = entry
            else:
                if score > entry.score:
                    entry.score = score
                if fid is not None:
                    entry.fid = fid
            self._resort()
            return replace(entry)

    def _resort(self) -> None:
        # sorted() is stable and dict order is insertion order
        self._sorted = sorted(self._entries.values(), key=lambda e: e.score, reverse=True)

    def _reset(self) -> None:
        self._entries.clear()
        self._sorted = []

    def get(self, address: str) -> Optional[ScoreEntry]:
        with self._lock:
            entry = self._entries.get(address)
            return replace(entry) if entry else None

    def rank_of(self, address: str) -> int:
        """1-based rank of ``address``; ``len + 1`` when it has no score."""
        with self._lock:
            for idx, entry in enumerate(self._sorted):
                if entry.address == address:
                    return idx + 1
            return len(self._sorted) + 1

    def rank_for_score(self, score: int) -> int:
        """Rank a score would take if submitted now, without recording it.

        Every incumbent with an equal or higher score stays ahead.
        """
        with self._lock:
            ahead = 0
            for entry in self._sorted:
                if entry.score >= score:
                    ahead += 1
            return ahead + 1

    def top_n(self, n: int) -> List[ScoreEntry]:
        with self._lock:
            return [replace(e) for e in self._sorted[:max(0, n)]]

    def snapshot(self) -> List[ScoreEntry]:
        with self._lock:
            return [replace(e) for e in self._sorted]

    def clear(self) -> None:
        with self._lock:
            self._reset()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
