"""
TIERWATCH - HA - Degraded Mode Controller

Conditions dégradées par tier, avec raison et horodatage d'entrée.

Conditions:
    NO_QUORUM: tier Db sans majorité de votes healthy (pas de primary
        garanti, intervention manuelle requise)
    POOL_EXHAUSTED: tier Web/App sans aucun membre healthy dans le
        backend pool (le Load Balancer retourne des erreurs)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from tierwatch.ha.interfaces import DegradedCondition, IDegradedModeController, TierName
from tierwatch.logging import StructuredLogger, get_logger


class DegradedModeError(Exception):
    """Erreur du contrôleur de mode dégradé."""

    pass


@dataclass(frozen=True)
class DegradedEntry:
    """Condition dégradée active."""

    tier: TierName
    condition: DegradedCondition
    reason: str
    since: datetime


class DegradedModeController(IDegradedModeController):
    """
    Contrôleur des conditions dégradées par tier.

    Entrer dans une condition déjà active ou sortir d'une condition
    inactive est un no-op (retourne False).
    """

    # Taille max de l'historique des entrées/sorties
    MAX_HISTORY_SIZE: int = 1000

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger = logger or get_logger("ha.degraded_mode")
        self._active: Dict[Tuple[TierName, DegradedCondition], DegradedEntry] = {}
        self._history: List[Dict[str, Any]] = []

    def enter_degraded_mode(self, tier: TierName, condition: DegradedCondition, reason: str) -> bool:
        """
        Active une condition dégradée.

        Args:
            tier: Tier concerné
            condition: Condition à activer
            reason: Raison pour l'opérateur

        Returns:
            True si la condition vient d'être activée

        Raises:
            DegradedModeError: Si reason vide
        """
        if not reason:
            raise DegradedModeError("reason is required to enter degraded mode")

        key = (tier, condition)
        if key in self._active:
            return False

        entry = DegradedEntry(tier=tier, condition=condition, reason=reason, since=datetime.now(timezone.utc))
        self._active[key] = entry
        self._record("degraded_mode_entered", entry)

        self._logger.warn(
            f"Tier {tier.value} entered {condition.value}",
            correlation_id=tier.value,
            reason=reason,
        )
        return True

    def exit_degraded_mode(self, tier: TierName, condition: DegradedCondition) -> bool:
        """
        Désactive une condition dégradée.

        Returns:
            True si la condition était active
        """
        entry = self._active.pop((tier, condition), None)
        if entry is None:
            return False

        duration = (datetime.now(timezone.utc) - entry.since).total_seconds()
        self._record("degraded_mode_exited", entry, duration_seconds=duration)

        self._logger.info(
            f"Tier {tier.value} cleared {condition.value}",
            correlation_id=tier.value,
            duration_seconds=duration,
        )
        return True

    def is_degraded(self, tier: TierName, condition: Optional[DegradedCondition] = None) -> bool:
        """
        Vérifie si un tier est dégradé.

        Args:
            tier: Tier concerné
            condition: Condition précise, ou None pour toute condition
        """
        if condition is not None:
            return (tier, condition) in self._active
        return any(t == tier for t, _ in self._active)

    def get_degraded_since(self, tier: TierName, condition: DegradedCondition) -> Optional[datetime]:
        """Timestamp d'activation, None si inactive."""
        entry = self._active.get((tier, condition))
        return entry.since if entry else None

    def get_degraded_reason(self, tier: TierName, condition: DegradedCondition) -> Optional[str]:
        """Raison d'activation, None si inactive."""
        entry = self._active.get((tier, condition))
        return entry.reason if entry else None

    def active_conditions(self, tier: Optional[TierName] = None) -> List[DegradedEntry]:
        """Conditions actives, éventuellement filtrées par tier."""
        return [e for (t, _), e in self._active.items() if tier is None or t == tier]

    def get_history(self) -> List[Dict[str, Any]]:
        """Historique des entrées/sorties de mode dégradé."""
        return list(self._history)

    def _record(self, event_type: str, entry: DegradedEntry, **extra: Any) -> None:
        if len(self._history) >= self.MAX_HISTORY_SIZE:
            self._history.pop(0)
        record = {
            "type": event_type,
            "tier": entry.tier.value,
            "condition": entry.condition.value,
            "reason": entry.reason,
            "since": entry.since.isoformat(),
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        record.update(extra)
        self._history.append(record)

    def get_status(self) -> Dict[str, Any]:
        """
        Status complet des conditions dégradées.

        Returns:
            Dictionnaire par tier des conditions actives.
        """
        now = datetime.now(timezone.utc)
        status: Dict[str, Any] = {}
        for entry in self._active.values():
            status.setdefault(entry.tier.value, []).append(
                {
                    "condition": entry.condition.value,
                    "reason": entry.reason,
                    "since": entry.since.isoformat(),
                    "duration_seconds": (now - entry.since).total_seconds(),
                }
            )
        return status
