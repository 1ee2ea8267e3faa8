from dataclasses import dataclass, field
from typing import List, Optional
import os

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    proxy_secret: Optional[str] = None
    host: str = '0.0.0.0'
    port: int = 3000
    part_timeout_ms: int = 5000
    # some servers only answer to 'TEXT' here
    fallback_part_id: str = '1'
    default_mailbox: str = 'INBOX'
    search_chunk_size: int = 200
    log_level: str = 'INFO'
    cors_origins: List[str] = field(default_factory=lambda: ['*'])

    @classmethod
    def from_env(cls) -> 'Settings':
        load_dotenv()
        origins = os.getenv('CORS_ORIGINS', '*')
        return cls(
            proxy_secret=os.getenv('PROXY_SECRET') or None,
            host=os.getenv('HOST', '0.0.0.0'),
            port=_env_int('PORT', 3000),
            part_timeout_ms=_env_int('PART_TIMEOUT_MS', 5000),
            fallback_part_id=os.getenv('FALLBACK_PART_ID', '1'),
            default_mailbox=os.getenv('DEFAULT_MAILBOX', 'INBOX'),
            search_chunk_size=max(1, _env_int('SEARCH_CHUNK_SIZE', 200)),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            cors_origins=[o.strip() for o in origins.split(',') if o.strip()],
        )
