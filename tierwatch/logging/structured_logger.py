"""
TIERWATCH - Logging - Structured Logger

Logger JSON structuré avec champs obligatoires.

Règles:
    - Format JSON structuré obligatoire
    - Champs obligatoires: timestamp, level, correlation_id, deployment_id, message
    - Timestamp ISO 8601 avec timezone UTC
    - Credentials JAMAIS en clair (masqués, y compris dans le message)
"""

import sys
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from .interfaces import (
    IStructuredLogger,
    ISensitiveMasker,
    LogConfig,
    LogEntry,
    LogLevel,
)
from .sensitive_masker import SensitiveMasker


class MissingRequiredFieldError(Exception):
    """Champ obligatoire manquant."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Required log field missing: {field_name}")


class StructuredLogger(IStructuredLogger):
    """
    Logger JSON structuré avec champs obligatoires.

    Les entrées sont capturées dans un buffer borné (un harnais qui sonde
    toutes les 15 secondes tourne pendant des heures) et envoyées à
    l'output handler s'il est défini.

    Example:
        logger = StructuredLogger("ha.health_monitor")
        logger.set_default_deployment("workshop-student-07")
        logger.info("Member transition", member_id="vm-web-1")
    """

    def __init__(
        self,
        name: str,
        config: Optional[LogConfig] = None,
        masker: Optional[ISensitiveMasker] = None,
        output_handler: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialise le logger structuré.

        Args:
            name: Nom du logger (identifiant composant)
            config: Configuration optionnelle
            masker: Masker pour données sensibles
            output_handler: Handler personnalisé pour output (stderr, tests)

        Raises:
            ValueError: Si name vide
        """
        if not name or not name.strip():
            raise ValueError("Logger name cannot be empty")

        self._name = name.strip()
        self._config = config or LogConfig()
        self._masker = masker or SensitiveMasker()
        self._output_handler = output_handler
        self._entries: Deque[LogEntry] = deque(maxlen=self._config.max_captured_entries)
        self._default_deployment_id: Optional[str] = self._config.default_deployment_id
        self._default_correlation_id: Optional[str] = self._config.default_correlation_id

    @property
    def name(self) -> str:
        """Retourne le nom du logger."""
        return self._name

    @property
    def config(self) -> LogConfig:
        """Retourne la configuration."""
        return self._config

    def set_default_deployment(self, deployment_id: str) -> None:
        """Définit deployment_id par défaut."""
        self._default_deployment_id = deployment_id

    def set_output_handler(self, handler: Optional[Callable[[str], None]]) -> None:
        """Remplace l'output handler (None = capture seule)."""
        self._output_handler = handler

    def child(self, name: str) -> "StructuredLogger":
        """
        Crée un logger fils partageant config, masker et output.

        Args:
            name: Suffixe du nom (ex: "failover_controller")

        Returns:
            Nouveau StructuredLogger nommé "<parent>.<name>"
        """
        child = StructuredLogger(
            f"{self._name}.{name}",
            config=self._config,
            masker=self._masker,
            output_handler=self._output_handler,
        )
        if self._default_deployment_id:
            child.set_default_deployment(self._default_deployment_id)
        return child

    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        deployment_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        """
        Crée log structuré JSON.

        Processus:
            1. Vérifie niveau >= min_level
            2. Résout correlation_id et deployment_id
            3. Masque données sensibles (extra et message)
            4. Crée LogEntry, capture, output JSON

        Args:
            level: Niveau de log
            message: Message à logger
            correlation_id: ID de corrélation (ou default, ou UUID généré)
            deployment_id: ID déploiement (ou default)
            **extra: Données supplémentaires

        Returns:
            LogEntry créé ou None si filtré

        Raises:
            MissingRequiredFieldError: Si deployment_id ou message manquant
        """
        if not self._should_log(level):
            return None

        resolved_correlation = correlation_id or self._default_correlation_id
        if not resolved_correlation:
            resolved_correlation = str(uuid.uuid4())

        resolved_deployment = deployment_id or self._default_deployment_id
        if not resolved_deployment:
            raise MissingRequiredFieldError("deployment_id")

        if not message:
            raise MissingRequiredFieldError("message")

        masked_extra: Dict[str, Any] = {}
        if extra and self._config.include_extra:
            if self._config.mask_sensitive:
                masked_extra = self._masker.mask(dict(extra))
            else:
                masked_extra = dict(extra)

        if self._config.mask_sensitive:
            message = self._masker.mask_string(message)

        entry = LogEntry(
            timestamp=self._generate_timestamp(),
            level=level,
            correlation_id=resolved_correlation,
            deployment_id=resolved_deployment,
            message=message,
            extra=masked_extra,
            logger_name=self._name,
        )

        self._entries.append(entry)

        if self._output_handler:
            self._output_handler(entry.to_json())

        return entry

    def _generate_timestamp(self) -> str:
        """
        Génère timestamp ISO 8601 UTC avec millisecondes.

        Format: 2024-12-04T14:30:00.123Z
        """
        now = datetime.now(timezone.utc)
        return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

    def _should_log(self, level: LogLevel) -> bool:
        return LogLevel.get_priority(level) >= LogLevel.get_priority(self._config.min_level)

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau DEBUG."""
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau INFO."""
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau WARN."""
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau ERROR."""
        return self.log(LogLevel.ERROR, message, **extra)

    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau CRITICAL."""
        return self.log(LogLevel.CRITICAL, message, **extra)

    def get_entries(self) -> List[LogEntry]:
        """
        Retourne les entrées de log capturées.

        Utile pour tests et pour le snapshot opérateur.
        """
        return list(self._entries)

    def clear_entries(self) -> None:
        """Efface les entrées capturées."""
        self._entries.clear()

    def get_entries_by_level(self, level: LogLevel) -> List[LogEntry]:
        """Filtre les entrées par niveau."""
        return [e for e in self._entries if e.level == level]

    def with_context(
        self,
        correlation_id: Optional[str] = None,
        deployment_id: Optional[str] = None,
    ) -> "ContextualLogger":
        """
        Crée un logger avec contexte pré-défini.

        Args:
            correlation_id: ID corrélation pour ce contexte (ex: un member_id)
            deployment_id: ID déploiement pour ce contexte

        Returns:
            ContextualLogger avec contexte fixé
        """
        return ContextualLogger(
            self,
            correlation_id=correlation_id or self._default_correlation_id,
            deployment_id=deployment_id or self._default_deployment_id,
        )


class ContextualLogger:
    """
    Logger avec contexte pré-défini.

    Wrapper qui fixe correlation_id et deployment_id pour
    éviter de les répéter à chaque appel.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        correlation_id: Optional[str] = None,
        deployment_id: Optional[str] = None,
    ) -> None:
        self._logger = logger
        self._correlation_id = correlation_id
        self._deployment_id = deployment_id

    def log(self, level: LogLevel, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log avec contexte."""
        return self._logger.log(
            level,
            message,
            correlation_id=self._correlation_id,
            deployment_id=self._deployment_id,
            **extra,
        )

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, message, **extra)

    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.CRITICAL, message, **extra)


def stderr_output(line: str) -> None:
    """Output handler qui écrit une ligne JSON sur stderr."""
    sys.stderr.write(line + "\n")


def get_logger(name: str, deployment_id: str = "local") -> StructuredLogger:
    """
    Logger par défaut des composants construits sans logger injecté.

    Args:
        name: Nom du composant
        deployment_id: Déploiement par défaut

    Returns:
        StructuredLogger en capture seule
    """
    return StructuredLogger(name, LogConfig(default_deployment_id=deployment_id))
