"""
TIERWATCH - Network - Interfaces

Interfaces pour la gestion réseau:
- Timeouts des sondes, des appels de routage et des redémarrages
- Retry avec backoff exponentiel des appels au backend pool

Valeurs par défaut:
    Sonde: 5s (annulation dure à 2x)
    Retry routage: 5 tentatives, base 1s, plafond 30s
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class TimeoutType(Enum):
    """Types de timeout supportés."""

    PROBE = "probe"
    ROUTING = "routing"
    RESTART = "restart"


@dataclass
class TimeoutConfig:
    """
    Configuration des timeouts.

    probe_timeout est configurable par tier (Web/App en HTTP, Db en TCP).
    """

    probe_timeout: float = 5.0
    routing_timeout: float = 30.0
    restart_timeout: float = 300.0


@dataclass
class RetryConfig:
    """Configuration des retries."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    retryable_exceptions: tuple = field(default_factory=lambda: (ConnectionError, TimeoutError))


@dataclass
class RetryResult:
    """Résultat d'une opération avec retry."""

    success: bool
    result: Optional[Any]
    attempts: int
    total_delay: float
    last_error: Optional[Exception]


# Callback appelé après chaque tentative échouée: (attempt, error, next_delay)
RetryObserver = Callable[[int, Exception, float], None]


class ITimeoutManager(ABC):
    """Interface gestion timeouts."""

    @abstractmethod
    def get_timeout(self, timeout_type: TimeoutType, tier: Optional[str] = None) -> float:
        """
        Retourne timeout configuré.

        Args:
            timeout_type: Type de timeout
            tier: Tier optionnel pour config spécifique

        Returns:
            Valeur du timeout en secondes
        """
        pass

    @abstractmethod
    def set_tier_timeout(self, tier: str, config: TimeoutConfig) -> None:
        """
        Configure les timeouts spécifiques d'un tier.

        Args:
            tier: Nom du tier (web, app, db)
            config: Configuration timeout
        """
        pass


class IRetryHandler(ABC):
    """Interface gestion retries."""

    @abstractmethod
    async def execute_with_retry(
        self,
        func: Callable[..., T],
        *args: Any,
        config: Optional[RetryConfig] = None,
        observer: Optional[RetryObserver] = None,
        **kwargs: Any,
    ) -> RetryResult:
        """
        Exécute avec retry et backoff exponentiel.

        Args:
            func: Fonction à exécuter
            *args: Arguments positionnels
            config: Configuration retry optionnelle
            observer: Callback appelé après chaque échec
            **kwargs: Arguments nommés

        Returns:
            RetryResult avec succès/échec et détails
        """
        pass

    @abstractmethod
    def calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """
        Calcule délai backoff exponentiel.

        Args:
            attempt: Numéro de tentative (0-indexed)
            config: Configuration retry

        Returns:
            Délai en secondes
        """
        pass

    @abstractmethod
    def is_retryable(self, error: Exception, config: RetryConfig) -> bool:
        """Vérifie si erreur est retryable."""
        pass
