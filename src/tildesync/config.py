import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .storage.kv_store import DEFAULT_MAX_BYTES

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_LOCATIONS = [
    Path.home() / '.config' / 'tildesync' / 'config.yaml',
    Path('config.yaml'),
]


@dataclass
class RemoteSettings:
    """Connection settings for the hosted document service."""
    base_url: str = "https://api.github.com"
    data_filename: str = "tildeplayer_data.json"
    description: str = "TildePlayer Data Storage"
    public: bool = True
    required_scope: str = "gist"
    timeout: float = 30.0
    validation_attempts: int = 2


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / '.local' / 'share' / 'tildesync' / 'store.db')
    max_bytes: int = DEFAULT_MAX_BYTES
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    duration_policy: str = "energetic"
    log_file: Optional[Path] = None

    @classmethod
    def load_config(cls, config_path: Path) -> 'Config':
        """Load configuration from YAML file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found at {config_path}")

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

        # Handle both flat and nested structures
        if 'storage' in config_data or 'remote' in config_data or 'sync' in config_data:
            storage = config_data.get('storage') or {}
            remote = config_data.get('remote') or {}
            sync = config_data.get('sync') or {}
        else:
            storage = remote = sync = config_data

        defaults = cls()
        remote_defaults = RemoteSettings()
        log_file = sync.get('log_file', config_data.get('log_file'))

        return cls(
            db_path=Path(storage.get('db_path', defaults.db_path)).expanduser(),
            max_bytes=int(storage.get('max_bytes', defaults.max_bytes)),
            remote=RemoteSettings(
                base_url=remote.get('base_url', remote_defaults.base_url),
                data_filename=remote.get('data_filename', remote_defaults.data_filename),
                description=remote.get('description', remote_defaults.description),
                public=bool(remote.get('public', remote_defaults.public)),
                required_scope=remote.get('required_scope', remote_defaults.required_scope),
                timeout=float(remote.get('timeout', remote_defaults.timeout)),
                validation_attempts=int(
                    remote.get('validation_attempts', remote_defaults.validation_attempts)
                ),
            ),
            duration_policy=sync.get('duration_policy', defaults.duration_policy),
            log_file=Path(log_file).expanduser() if log_file else None,
        )

    def save_config(self, config_path: Path):
        """Save configuration to YAML file."""
        config_data = {
            'storage': {
                'db_path': str(self.db_path),
                'max_bytes': self.max_bytes,
            },
            'remote': {
                'base_url': self.remote.base_url,
                'data_filename': self.remote.data_filename,
                'description': self.remote.description,
                'public': self.remote.public,
                'required_scope': self.remote.required_scope,
                'timeout': self.remote.timeout,
                'validation_attempts': self.remote.validation_attempts,
            },
            'sync': {
                'duration_policy': self.duration_policy,
            },
        }
        if self.log_file:
            config_data['sync']['log_file'] = str(self.log_file)

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.dump(config_data, f, default_flow_style=False)


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from the given path or standard locations.

    Falls back to built-in defaults when no file is found.
    """
    if config_path is not None:
        return Config.load_config(config_path)

    for path in DEFAULT_CONFIG_LOCATIONS:
        if path.exists():
            try:
                config = Config.load_config(path)
                logger.info(f"Loaded configuration from {path}")
                return config
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")

    logger.info("No configuration file found, using defaults")
    return Config()
