"""Round services: the score ledger, the round controller and its poller.

Imported by HTTP routes, socket handlers and CLI commands; none of these
modules know about request or response objects.
"""

from .ledger import ScoreEntry, ScoreLedger, StaleRoundError
from .controller import RoundController
from .scheduler import RoundPoller, start_round_poller
