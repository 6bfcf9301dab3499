import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    # Flask (development backend)
    SECRET_KEY: str = os.getenv('FLASK_SECRET_KEY', 'dev-secret-key-change-in-production')
    ENV: str = os.getenv('FLASK_ENV', 'development')
    DEBUG: bool = os.getenv('FLASK_DEBUG', 'True').lower() == 'true'

    # Supabase
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_KEY: str = os.getenv('SUPABASE_KEY', '')

    # Passkey backend (challenge service + remote registration)
    API_BASE_URL: str = os.getenv('PASSKEY_API_BASE_URL', 'http://localhost:5000/api')
    HTTP_TIMEOUT: float = float(os.getenv('PASSKEY_HTTP_TIMEOUT', '10'))

    # Relying party
    RP_ID: str = os.getenv('PASSKEY_RP_ID', 'localhost')
    RP_NAME: str = os.getenv('PASSKEY_RP_NAME', 'Erynoa')

    # Ceremony timeout in milliseconds (2 minutes)
    CEREMONY_TIMEOUT_MS: int = int(os.getenv('PASSKEY_CEREMONY_TIMEOUT_MS', '120000'))

    # Local credential ledger, one JSON file per profile directory
    PROFILE_DIR: str = os.getenv('PASSKEY_PROFILE_DIR', os.path.join(os.path.expanduser('~'), '.erynoa'))

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')


config = Config()
