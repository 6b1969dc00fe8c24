"""
Configuration - per-user paths, defaults and last-used setup values
"""
import os
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any

# Global configuration
CONFIG_DIR = Path(os.environ.get('WEBHOOK_TUI_HOME') or Path.home() / '.webhook-tui')
CONFIG_FILE = CONFIG_DIR / 'config.json'
DB_FILE = CONFIG_DIR / 'webhooks.db'
LOG_DIR = CONFIG_DIR / 'logs'
LOG_FILE = LOG_DIR / 'webhook-tui.log'

DEFAULT_PORT = 8098
DEFAULT_TIMEOUT_MINUTES = 30
PAGE_SIZE = 20
FEED_CAPACITY = 100

IP_LOOKUP_URLS = (
    'https://api.ipify.org',
    'https://ifconfig.me/ip',
)


def load_json(filepath: Path) -> Dict:
    """Load a JSON file."""
    try:
        with open(filepath, 'r') as f:
            data = json.load(f)
    except (json.JSONDecodeError, FileNotFoundError, NotADirectoryError):
        return {}
    return data if isinstance(data, dict) else {}


def save_json(filepath: Path, data: Dict):
    """Write a JSON file."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'w') as f:
        json.dump(data, f, indent=2)


@dataclass
class Settings:
    """Values entered on the setup screen, remembered between runs."""

    port: str = ''
    subdomain: str = ''
    timeout_minutes: str = ''

    @classmethod
    def load(cls, filepath: Path = CONFIG_FILE) -> 'Settings':
        data = load_json(filepath)
        return cls(
            port=str(data.get('port') or ''),
            subdomain=str(data.get('subdomain') or ''),
            timeout_minutes=str(data.get('timeout_minutes') or ''),
        )

    def save(self, filepath: Path = CONFIG_FILE):
        data = load_json(filepath)
        data.update(self.to_dict())
        save_json(filepath, data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'port': self.port,
            'subdomain': self.subdomain,
            'timeout_minutes': self.timeout_minutes,
        }
