"""
Portal Client - Config Loader Implementation
Charge la configuration depuis un fichier YAML puis l'environnement.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from .errors import ConfigError
from .interfaces import ClientConfig, IConfigLoader


class ConfigLoader(IConfigLoader):
    """
    Chargement de la configuration client.

    Ordre de priorité (du plus faible au plus fort):
        1. Valeurs par défaut de ClientConfig
        2. Fichier YAML optionnel
        3. Variables d'environnement PORTAL_*

    Example:
        config = ConfigLoader().load(Path("portal.yaml"))
    """

    # Variable d'environnement -> champ ClientConfig
    ENV_MAPPING: Dict[str, str] = {
        "PORTAL_API_URL": "api_base_url",
        "PORTAL_CLIENT_ID": "client_id",
        "PORTAL_CLIENT_SECRET": "client_secret",
        "PORTAL_REFRESH_DEBOUNCE": "refresh_debounce_seconds",
        "PORTAL_REQUEST_TIMEOUT_MS": "request_timeout_ms",
        "PORTAL_CREDENTIAL_SYNC": "credential_sync_enabled",
        "PORTAL_CREDENTIAL_SYNC_DIR": "credential_sync_dir",
        "PORTAL_TOKEN_STORE": "token_store_path",
        "PORTAL_TOKEN_KEY": "token_store_key",
        "PORTAL_LOG_LEVEL": "log_level",
    }

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Args:
            environ: Environnement à lire (défaut: os.environ)
        """
        self._environ = environ if environ is not None else os.environ

    def load(self, path: Optional[Path] = None) -> ClientConfig:
        """
        Charge la configuration.

        Args:
            path: Fichier YAML optionnel

        Returns:
            ClientConfig validée

        Raises:
            ConfigError: Si fichier inexistant, YAML invalide ou valeurs invalides
        """
        values: Dict[str, Any] = {}

        if path is not None:
            values.update(self._read_yaml(Path(path)))

        values.update(self._read_environ())

        try:
            return ClientConfig(**values)
        except ValidationError as e:
            raise ConfigError(f"Configuration invalide: {e}") from e

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        """Lit et valide la structure de base du fichier YAML."""
        if not path.exists():
            raise ConfigError(f"Fichier de configuration non trouvé: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Erreur de parsing YAML: {e}") from e
        except OSError as e:
            raise ConfigError(f"Erreur de lecture fichier: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration doit être un objet YAML")

        return data

    def _read_environ(self) -> Dict[str, Any]:
        """Extrait les surcharges depuis l'environnement."""
        values: Dict[str, Any] = {}
        for env_name, field_name in self.ENV_MAPPING.items():
            raw = self._environ.get(env_name)
            if raw is None or raw == "":
                continue
            if field_name == "credential_sync_enabled":
                values[field_name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[field_name] = raw
        return values
