"""
TIERWATCH - Core - Config Loader
Charge une topologie depuis fichiers YAML et vérifie sa cohérence.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .config_validator import ConfigValidator
from .interfaces import IConfigLoader, TopologyConfig, ValidationError


class ConfigIntegrityError(Exception):
    """Erreur d'intégrité de configuration."""

    def __init__(self, message: str, errors: Optional[List[ValidationError]] = None):
        self.errors = errors or []
        super().__init__(message)


class ConfigLoader(IConfigLoader):
    """Chargement des topologies depuis fichiers YAML."""

    def __init__(self, configs_path: str = "fixtures/configs", validator: Optional[ConfigValidator] = None):
        self.configs_path = Path(configs_path)
        self._validator = validator or ConfigValidator()

    async def load(self, deployment_id: str) -> TopologyConfig:
        """
        Charge la topologie d'un déploiement.

        Args:
            deployment_id: ID du déploiement (nom du fichier sans extension)

        Returns:
            Topologie validée

        Raises:
            ConfigIntegrityError: Si fichier inexistant, YAML invalide ou règle bloquante violée
        """
        config_file = self.configs_path / f"{deployment_id}.yaml"

        if not config_file.exists():
            raise ConfigIntegrityError(f"Configuration non trouvée pour déploiement: {deployment_id}")

        return self.load_path(config_file)

    def load_path(self, path: Union[str, Path]) -> TopologyConfig:
        """Charge et valide un fichier de topologie."""
        raw = self._read_yaml(Path(path))
        return self.parse(raw)

    def parse(self, raw: Dict[str, Any]) -> TopologyConfig:
        """
        Valide un dictionnaire de topologie.

        Raises:
            ConfigIntegrityError: Si au moins une règle bloquante est violée
        """
        result = self._validator.validate(raw)
        if not result.valid:
            details = "; ".join(f"{e.rule_id} {e.location}: {e.message}" for e in result.errors)
            raise ConfigIntegrityError(f"Topologie invalide: {details}", errors=result.errors)

        return TopologyConfig.model_validate(raw)

    def _read_yaml(self, config_file: Path) -> Dict[str, Any]:
        if not config_file.exists():
            raise ConfigIntegrityError(f"Fichier de configuration absent: {config_file}")

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigIntegrityError(f"Erreur de parsing YAML: {e}")
        except OSError as e:
            raise ConfigIntegrityError(f"Erreur de lecture fichier: {e}")

        if not isinstance(config, dict):
            raise ConfigIntegrityError("Configuration doit être un objet YAML")

        return config
