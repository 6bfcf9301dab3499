from typing import Optional
from supabase import create_client, Client

from config import config

PASSKEY_CREDENTIALS_TABLE = 'passkey_credentials'

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Lazily created Supabase client for the development backend."""
    global _client

    if _client is None:
        if not config.SUPABASE_URL or config.SUPABASE_URL == 'https://your-project.supabase.co':
            raise ValueError(
                "SUPABASE_URL is not configured; the passkey backend needs it "
                "to persist registered credentials"
            )
        if not config.SUPABASE_KEY or config.SUPABASE_KEY == 'your-supabase-anon-key':
            raise ValueError("SUPABASE_KEY is not configured")

        _client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY)

    return _client


def find_passkey_credential(credential_id: str) -> Optional[dict]:
    result = get_supabase_client().table(PASSKEY_CREDENTIALS_TABLE) \
        .select('*') \
        .eq('credential_id', credential_id) \
        .execute()
    return result.data[0] if result.data else None


def insert_passkey_credential(row: dict) -> None:
    get_supabase_client().table(PASSKEY_CREDENTIALS_TABLE).insert(row).execute()
