import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///farmeow.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PORT = int(os.environ.get('PORT', '3000'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Comma-separated; '*' allows any origin
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    # Neynar (Farcaster identity)
    NEYNAR_API_KEY = os.environ.get('NEYNAR_API_KEY')
    NEYNAR_CLIENT_ID = os.environ.get('NEYNAR_CLIENT_ID')
    NEYNAR_CLIENT_SECRET = os.environ.get('NEYNAR_CLIENT_SECRET')
    NEYNAR_API_URL = os.environ.get('NEYNAR_API_URL', 'https://api.neynar.com')
    NEYNAR_OAUTH_URL = os.environ.get('NEYNAR_OAUTH_URL', 'https://app.neynar.com')
    NEYNAR_TIMEOUT_SEC = float(os.environ.get('NEYNAR_TIMEOUT_SEC', '10'))
    # Eligibility thresholds
    MIN_ACCOUNT_AGE_DAYS = int(os.environ.get('MIN_ACCOUNT_AGE_DAYS', '7'))
    MIN_FOLLOWER_COUNT = int(os.environ.get('MIN_FOLLOWER_COUNT', '5'))

    # Vault contract on Base
    BASE_RPC_URL = os.environ.get('BASE_RPC_URL')
    VAULT_ADDRESS = os.environ.get('VAULT_ADDRESS')
    GAME_SERVER_PRIVATE_KEY = os.environ.get('GAME_SERVER_PRIVATE_KEY')
    OWNER_PRIVATE_KEY = os.environ.get('OWNER_PRIVATE_KEY')
    FEE_RECIPIENT_ADDRESS = os.environ.get('FEE_RECIPIENT_ADDRESS')
    VAULT_TOKEN_DECIMALS = int(os.environ.get('VAULT_TOKEN_DECIMALS', '6'))
    RPC_TIMEOUT_SEC = int(os.environ.get('RPC_TIMEOUT_SEC', '15'))
    TX_CONFIRM_TIMEOUT_SEC = int(os.environ.get('TX_CONFIRM_TIMEOUT_SEC', '180'))

    # Rounds
    PRIZE_POOL_SIZE = int(os.environ.get('PRIZE_POOL_SIZE', '20'))
    LEADERBOARD_SIZE = int(os.environ.get('LEADERBOARD_SIZE', '20'))
    ROUND_POLL_INTERVAL_SEC = int(os.environ.get('ROUND_POLL_INTERVAL_SEC', '60'))
    # Optional: heartbeat interval for poller logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
    # Optional pause between commitScore and submitScore (sec). A deterrent
    # only; ordering comes from the chain.
    COMMIT_REVEAL_DELAY_SEC = float(os.environ.get('COMMIT_REVEAL_DELAY_SEC', '0'))
