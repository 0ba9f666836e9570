"""Farcaster identity lookups through the Neynar API, plus eligibility checks.

No caching and no retries: a failed request surfaces as ``UpstreamError``
and the caller decides what to do.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlencode

import requests

from farmeow.errors import IneligibleError, NotFoundError, UpstreamError, ValidationError


@dataclass(frozen=True)
class FarcasterAccount:
    fid: int
    username: Optional[str]
    pfp_url: Optional[str] = None
    follower_count: int = 0
    registered_at: Optional[datetime] = None
    custody_address: Optional[str] = None
    verified_addresses: Tuple[str, ...] = field(default_factory=tuple)

    def account_age_days(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.registered_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self.registered_at).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fid': self.fid,
            'username': self.username,
            'pfp_url': self.pfp_url,
            'follower_count': self.follower_count,
            'registered_at': self.registered_at.isoformat() if self.registered_at else None,
            'custody_address': self.custody_address,
        }


def parse_registered_at(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 strings (with or without ``Z``) or unix seconds."""
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def account_from_user(user: Dict[str, Any]) -> FarcasterAccount:
    verified = ((user.get('verified_addresses') or {}).get('eth_addresses')) or []
    return FarcasterAccount(
        fid=int(user['fid']),
        username=user.get('username'),
        pfp_url=user.get('pfp_url'),
        follower_count=int(user.get('follower_count') or 0),
        registered_at=parse_registered_at(user.get('registered_at')),
        custody_address=user.get('custody_address'),
        verified_addresses=tuple(verified),
    )


class NeynarClient:

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = 'https://api.neynar.com',
        oauth_url: str = 'https://app.neynar.com',
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.oauth_url = oauth_url.rstrip('/')
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'accept': 'application/json'})
        if api_key:
            self.session.headers.update({'x-api-key': api_key})

    @classmethod
    def from_config(cls, config) -> 'NeynarClient':
        return cls(
            api_key=config.get('NEYNAR_API_KEY'),
            base_url=config.get('NEYNAR_API_URL', 'https://api.neynar.com'),
            oauth_url=config.get('NEYNAR_OAUTH_URL', 'https://app.neynar.com'),
            client_id=config.get('NEYNAR_CLIENT_ID'),
            client_secret=config.get('NEYNAR_CLIENT_SECRET'),
            timeout=float(config.get('NEYNAR_TIMEOUT_SEC', 10)),
        )

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise UpstreamError(f'identity API unreachable: {exc}') from exc
        if response.status_code == 404:
            raise NotFoundError('No Farcaster profile found')
        if response.status_code >= 400:
            body = response.text.strip()[:200]
            raise UpstreamError(f'identity API returned HTTP {response.status_code}: {body}')
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError('identity API returned a non-JSON body') from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f'unexpected identity API payload: {type(payload).__name__}')
        return payload

    def fetch_user(self, fid: int) -> FarcasterAccount:
        payload = self._request('GET', f'{self.base_url}/v2/farcaster/user/bulk', params={'fids': str(fid)})
        users = payload.get('users') or []
        if not users:
            raise NotFoundError(f'No Farcaster user with fid {fid}', fid=fid)
        return account_from_user(users[0])

    def lookup_by_address(self, address: str) -> FarcasterAccount:
        payload = self._request(
            'GET', f'{self.base_url}/v2/farcaster/user/bulk-by-address', params={'addresses': address}
        )
        # keys are lower-cased addresses
        matches = payload.get(address.lower()) or payload.get(address) or []
        if not matches:
            raise NotFoundError('No Farcaster profile found', address=address)
        return account_from_user(matches[0])

    def build_authorize_url(self, redirect_url: str, client_id: Optional[str] = None) -> str:
        client_id = client_id or self.client_id
        if not client_id:
            raise ValidationError('clientId is required', field='clientId')
        query = urlencode({
            'client_id': client_id,
            'redirect_uri': redirect_url,
            'response_type': 'code',
            'scope': 'openid offline_access',
        }, quote_via=quote)
        return f'{self.oauth_url}/api/oauth/authorize?{query}'

    def exchange_code(self, code: str) -> Dict[str, Any]:
        token = self._request('POST', f'{self.oauth_url}/api/oauth/token', json={
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'code': code,
            'grant_type': 'authorization_code',
        })
        access_token = token.get('access_token')
        if not access_token:
            raise UpstreamError('OAuth token response had no access_token')
        me = self._request(
            'GET', f'{self.base_url}/v2/farcaster/user/me', headers={'Authorization': f'Bearer {access_token}'}
        )
        user = me.get('user') or {}
        if 'fid' not in user:
            raise NotFoundError('No Farcaster profile found')
        return {
            'fid': user['fid'],
            'username': user.get('username'),
            'pfpUrl': user.get('pfp_url'),
            'signer': user.get('custody_address'),
        }


def verify_farcaster_account(
    client: NeynarClient,
    fid: int,
    min_account_age_days: int = 7,
    min_follower_count: int = 5,
    now: Optional[datetime] = None,
) -> FarcasterAccount:
    """Fetch ``fid`` and apply the eligibility predicates, age first.

    An account with no registration timestamp fails the age check.
    """
    account = client.fetch_user(fid)
    age = account.account_age_days(now)
    if age is None or age < min_account_age_days:
        raise IneligibleError(
            'account age',
            threshold=min_account_age_days,
            actual=age,
            message=f'account age below minimum of {min_account_age_days} days',
        )
    if account.follower_count < min_follower_count:
        raise IneligibleError(
            'follower count',
            threshold=min_follower_count,
            actual=account.follower_count,
            message=f'follower count below minimum of {min_follower_count}',
        )
    return account
