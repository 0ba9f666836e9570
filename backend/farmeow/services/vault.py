"""Client for the FarMeowVault contract.

Reads go straight to ``eth_call``. Writes are signed locally with the game
server key, sent one at a time (so nonces never collide) and then awaited
with a bounded confirmation timeout.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from farmeow.errors import ContractCallError, UpstreamError, ValidationError


def _fn(name: str, inputs: List[tuple], outputs: Optional[List[tuple]] = None, view: bool = False) -> Dict[str, Any]:
    return {
        'type': 'function',
        'name': name,
        'inputs': [{'name': n, 'type': t} for n, t in inputs],
        'outputs': [{'name': n, 'type': t} for n, t in (outputs or [])],
        'stateMutability': 'view' if view else 'nonpayable',
    }


VAULT_ABI = [
    _fn('verifyPlayer', [('player', 'address'), ('fid', 'uint256')]),
    _fn('commitScore', [('commitment', 'bytes32')]),
    _fn('submitScore', [('player', 'address'), ('score', 'uint256'), ('secret', 'bytes32')]),
    _fn('getCurrentRound', [], [
        ('roundId', 'uint256'),
        ('vaultAmount', 'uint256'),
        ('totalPlayers', 'uint256'),
        ('timeRemaining', 'uint256'),
        ('finalized', 'bool'),
    ], view=True),
    _fn('finalizeRoundWithTopPlayers', [('players', 'address[]'), ('scores', 'uint256[]')]),
    _fn('batchDistributePrizes', [('roundId', 'uint256')]),
    _fn('withdrawPlatformFees', [('recipient', 'address')]),
]


def to_checksum_address(value: Any, field: str = 'address') -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValidationError(f'{field} must be a 0x-prefixed 20-byte address', field=field)
    return Web3.to_checksum_address(value)


def to_bytes32(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a 0x-prefixed 32-byte hex string', field=field)
    try:
        raw = Web3.to_bytes(hexstr=value)
    except ValueError:
        raise ValidationError(f'{field} must be a 0x-prefixed 32-byte hex string', field=field)
    if len(raw) != 32:
        raise ValidationError(f'{field} must be exactly 32 bytes', field=field)
    return raw


def compute_commitment(address: str, score: int, secret: bytes) -> str:
    """keccak256(abi.encodePacked(address, uint256, bytes32)) as 0x-hex."""
    digest = Web3.solidity_keccak(['address', 'uint256', 'bytes32'], [address, score, secret])
    return Web3.to_hex(digest)


@dataclass(frozen=True)
class RoundState:
    round_id: int
    vault_amount: int
    total_players: int
    time_remaining: int
    finalized: bool

    @property
    def is_over(self) -> bool:
        return self.time_remaining == 0

    @property
    def accepting_scores(self) -> bool:
        return not self.finalized and self.time_remaining > 0

    def to_dict(self, decimals: int = 6) -> Dict[str, Any]:
        return {
            'roundId': self.round_id,
            'vaultAmount': str(self.vault_amount),
            'vaultAmountFormatted': f"{self.vault_amount / (10 ** decimals):.{decimals}f}",
            'totalPlayers': self.total_players,
            'timeRemaining': self.time_remaining,
            'finalized': self.finalized,
        }


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class VaultClient:

    def __init__(self, w3: Web3, address: str, private_key: Optional[str] = None, confirm_timeout: int = 180):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=VAULT_ABI)
        self.account = w3.eth.account.from_key(private_key) if private_key else None
        self.confirm_timeout = confirm_timeout
        self._send_lock = threading.Lock()

    @classmethod
    def from_config(cls, config, key_name: str = 'GAME_SERVER_PRIVATE_KEY') -> Optional['VaultClient']:
        rpc_url = config.get('BASE_RPC_URL')
        address = config.get('VAULT_ADDRESS')
        if not rpc_url or not address:
            return None
        timeout = int(config.get('RPC_TIMEOUT_SEC', 15))
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        return cls(
            w3,
            address,
            private_key=config.get(key_name),
            confirm_timeout=int(config.get('TX_CONFIRM_TIMEOUT_SEC', 180)),
        )

    # ---- reads ----

    def get_current_round(self) -> RoundState:
        try:
            round_id, vault_amount, total_players, time_remaining, finalized = (
                self.contract.functions.getCurrentRound().call()
            )
        except (Web3Exception, requests.RequestException, ValueError) as exc:
            raise UpstreamError(f'getCurrentRound failed: {exc}') from exc
        return RoundState(
            round_id=int(round_id),
            vault_amount=int(vault_amount),
            total_players=int(total_players),
            time_remaining=int(time_remaining),
            finalized=bool(finalized),
        )

    # ---- writes ----

    def verify_player(self, address: str, fid: int) -> TxResult:
        return self._transact('verifyPlayer', self.contract.functions.verifyPlayer(address, fid))

    def commit_score(self, commitment: bytes) -> TxResult:
        return self._transact('commitScore', self.contract.functions.commitScore(commitment))

    def submit_score(self, address: str, score: int, secret: bytes) -> TxResult:
        return self._transact('submitScore', self.contract.functions.submitScore(address, score, secret))

    def finalize_round_with_top_players(self, addresses: Sequence[str], scores: Sequence[int]) -> TxResult:
        if len(addresses) != len(scores):
            raise ValueError('addresses and scores must have the same length')
        return self._transact(
            'finalizeRoundWithTopPlayers',
            self.contract.functions.finalizeRoundWithTopPlayers(list(addresses), list(scores)),
        )

    def batch_distribute_prizes(self, round_id: int) -> TxResult:
        return self._transact('batchDistributePrizes', self.contract.functions.batchDistributePrizes(round_id))

    def withdraw_platform_fees(self, recipient: str) -> TxResult:
        return self._transact('withdrawPlatformFees', self.contract.functions.withdrawPlatformFees(recipient))

    def _transact(self, name: str, call) -> TxResult:
        if self.account is None:
            raise ContractCallError(f'{name}: no signing key configured', function=name)
        with self._send_lock:
            try:
                tx = call.build_transaction({
                    'from': self.account.address,
                    'nonce': self.w3.eth.get_transaction_count(self.account.address, 'pending'),
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
            except ContractLogicError as exc:
                raise ContractCallError(f'{name} reverted: {exc}', function=name) from exc
            except requests.RequestException as exc:
                raise UpstreamError(f'{name} could not reach RPC: {exc}') from exc
            except (Web3Exception, ValueError) as exc:
                raise ContractCallError(f'{name} could not be sent: {exc}', function=name) from exc
        return self._wait(name, tx_hash)

    def _wait(self, name: str, tx_hash: str) -> TxResult:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.confirm_timeout)
        except TimeExhausted as exc:
            raise ContractCallError(
                f'{name} not confirmed within {self.confirm_timeout}s', function=name, tx_hash=tx_hash, pending=True
            ) from exc
        except (Web3Exception, requests.RequestException) as exc:
            raise ContractCallError(
                f'{name} confirmation failed: {exc}', function=name, tx_hash=tx_hash, pending=True
            ) from exc
        if receipt['status'] != 1:
            raise ContractCallError(f'{name} reverted on-chain', function=name, tx_hash=tx_hash)
        return TxResult(tx_hash=tx_hash, block_number=receipt.get('blockNumber'), gas_used=receipt.get('gasUsed'))

    def get_receipt(self, tx_hash: str) -> Optional[TxResult]:
        """Receipt of an earlier transaction; ``None`` while it is unmined."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (Web3Exception, requests.RequestException, ValueError) as exc:
            raise UpstreamError(f'receipt lookup for {tx_hash} failed: {exc}') from exc
        if receipt['status'] != 1:
            raise ContractCallError('transaction reverted on-chain', tx_hash=tx_hash)
        return TxResult(tx_hash=tx_hash, block_number=receipt.get('blockNumber'), gas_used=receipt.get('gasUsed'))
