import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass
class BunqConfig:
    environment: str
    api_key: str
    auth_mode: str  # api_key | oauth2
    credential_file: str
    oauth_client_id: str
    oauth_client_secret: str
    oauth_redirect_uri: str
    oauth_access_token: str
    oauth_refresh_token: str
    timeout_s: float
    page_size: int
    webhook_host: str
    webhook_port: int
    webhook_path: str
    log_level: str


def load_config_from_env(env_file: Optional[str] = None) -> BunqConfig:
    load_dotenv(env_file)
    environment = os.getenv('BUNQ_ENVIRONMENT', 'sandbox').strip().lower()
    return BunqConfig(
        environment=environment,
        api_key=(os.getenv('BUNQ_API_KEY') or '').strip(),
        auth_mode=os.getenv('BUNQ_AUTH_MODE', 'api_key').strip().lower(),
        credential_file=os.getenv('BUNQ_CREDENTIAL_FILE', f'~/.bunqnodes/{environment}.json'),
        oauth_client_id=(os.getenv('BUNQ_OAUTH_CLIENT_ID') or '').strip(),
        oauth_client_secret=(os.getenv('BUNQ_OAUTH_CLIENT_SECRET') or '').strip(),
        oauth_redirect_uri=os.getenv('BUNQ_OAUTH_REDIRECT_URI', 'http://localhost:3000/callback'),
        oauth_access_token=(os.getenv('BUNQ_OAUTH_ACCESS_TOKEN') or '').strip(),
        oauth_refresh_token=(os.getenv('BUNQ_OAUTH_REFRESH_TOKEN') or '').strip(),
        timeout_s=float(os.getenv('BUNQ_TIMEOUT_S', '10')),
        page_size=int(os.getenv('BUNQ_PAGE_SIZE', '200')),
        webhook_host=os.getenv('BUNQ_WEBHOOK_HOST', '0.0.0.0'),
        webhook_port=int(os.getenv('BUNQ_WEBHOOK_PORT', '8080')),
        webhook_path=os.getenv('BUNQ_WEBHOOK_PATH', '/webhook/bunq'),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )
