"""
TIERWATCH - Network - Timeout Manager

Gestion centralisée des timeouts, configurables par tier.

Le timeout de sonde borne chaque probe; le scheduler annule de force
toute sonde qui dépasse HARD_DEADLINE_FACTOR fois ce timeout.
"""

from typing import Dict, Optional

from .interfaces import ITimeoutManager, TimeoutConfig, TimeoutType


class InvalidTimeoutError(Exception):
    """Configuration timeout invalide."""

    pass


class TimeoutManager(ITimeoutManager):
    """Gestion centralisée des timeouts par tier."""

    # Limites strictes
    MAX_PROBE_TIMEOUT: float = 60.0
    MAX_ROUTING_TIMEOUT: float = 120.0
    MAX_RESTART_TIMEOUT: float = 1800.0

    # Annulation dure des sondes
    HARD_DEADLINE_FACTOR: float = 2.0

    def __init__(self, default_config: Optional[TimeoutConfig] = None) -> None:
        """
        Initialise le gestionnaire de timeouts.

        Args:
            default_config: Configuration par défaut (optionnel)

        Raises:
            InvalidTimeoutError: Si la configuration par défaut est invalide
        """
        self._default = default_config or TimeoutConfig()
        self._tier_configs: Dict[str, TimeoutConfig] = {}

        self._validate_config(self._default)

    def _validate_config(self, config: TimeoutConfig) -> None:
        """
        Valide une configuration complète.

        Raises:
            InvalidTimeoutError: Si configuration invalide
        """
        checks = (
            (TimeoutType.PROBE, config.probe_timeout, self.MAX_PROBE_TIMEOUT),
            (TimeoutType.ROUTING, config.routing_timeout, self.MAX_ROUTING_TIMEOUT),
            (TimeoutType.RESTART, config.restart_timeout, self.MAX_RESTART_TIMEOUT),
        )
        for timeout_type, value, maximum in checks:
            if value <= 0:
                raise InvalidTimeoutError(f"{timeout_type.value}_timeout must be positive")
            if value > maximum:
                raise InvalidTimeoutError(
                    f"{timeout_type.value}_timeout ({value}s) exceeds maximum ({maximum}s)"
                )

    def get_timeout(self, timeout_type: TimeoutType, tier: Optional[str] = None) -> float:
        """
        Retourne timeout configuré (spécifique au tier ou default).

        Args:
            timeout_type: Type de timeout demandé
            tier: Tier pour config spécifique (optionnel)

        Returns:
            Valeur du timeout en secondes
        """
        config = self._default
        if tier and tier in self._tier_configs:
            config = self._tier_configs[tier]

        if timeout_type == TimeoutType.PROBE:
            return config.probe_timeout
        elif timeout_type == TimeoutType.ROUTING:
            return config.routing_timeout
        elif timeout_type == TimeoutType.RESTART:
            return config.restart_timeout
        else:
            raise ValueError(f"Unknown timeout type: {timeout_type}")

    def get_hard_deadline(self, tier: Optional[str] = None) -> float:
        """
        Retourne la limite d'annulation dure d'une sonde.

        Args:
            tier: Tier concerné

        Returns:
            HARD_DEADLINE_FACTOR x timeout de sonde du tier
        """
        return self.get_timeout(TimeoutType.PROBE, tier) * self.HARD_DEADLINE_FACTOR

    def set_tier_timeout(self, tier: str, config: TimeoutConfig) -> None:
        """
        Configure les timeouts d'un tier.

        Raises:
            InvalidTimeoutError: Si configuration invalide
            ValueError: Si tier vide
        """
        if not tier or not tier.strip():
            raise ValueError("tier cannot be empty")

        self._validate_config(config)
        self._tier_configs[tier] = config
