"""
TIERWATCH - Incident - Alert Dispatcher

Enregistre les alertes opérateur et les diffuse vers les notifiers
externes configurés.

Un notifier en échec n'empêche jamais l'enregistrement de l'alerte:
l'échec est loggé et les autres notifiers sont tout de même appelés.
"""

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from tierwatch.incident.interfaces import (
    Alert,
    AlertKind,
    AlertNotifier,
    AlertSeverity,
    IAlertDispatcher,
)
from tierwatch.logging import StructuredLogger, get_logger


class AlertDispatcherError(Exception):
    """Erreur du dispatcher d'alertes."""

    pass


class AlertDispatcher(IAlertDispatcher):
    """
    Dispatcher d'alertes opérateur.

    Example:
        dispatcher = AlertDispatcher(notifiers=[teams_webhook])
        await dispatcher.raise_alert(AlertKind.QUORUM_LOST, "db", "1/2 votes")
    """

    # Sévérité par défaut selon le type d'alerte
    DEFAULT_SEVERITIES: Dict[AlertKind, AlertSeverity] = {
        AlertKind.QUORUM_LOST: AlertSeverity.CRITICAL,
        AlertKind.POOL_EXHAUSTED: AlertSeverity.CRITICAL,
        AlertKind.ROUTING_FAILED: AlertSeverity.HIGH,
    }

    MAX_ALERTS: int = 1000

    def __init__(
        self,
        notifiers: Optional[List[AlertNotifier]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialise le dispatcher.

        Args:
            notifiers: Canaux externes notifiés pour chaque alerte
            logger: Logger structuré (défaut: capture seule)
        """
        self._notifiers: List[AlertNotifier] = list(notifiers or [])
        self._logger = logger or get_logger("incident.alert_dispatcher")
        self._alerts: Deque[Alert] = deque(maxlen=self.MAX_ALERTS)

    def add_notifier(self, notifier: AlertNotifier) -> None:
        """Ajoute un canal de notification."""
        self._notifiers.append(notifier)

    async def raise_alert(
        self,
        kind: AlertKind,
        tier: str,
        message: str,
        member_id: Optional[str] = None,
        severity: Optional[AlertSeverity] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """
        Lève une alerte, l'enregistre puis notifie les canaux.

        Args:
            kind: Type d'alerte
            tier: Tier concerné
            message: Description lisible par l'opérateur
            member_id: Membre concerné (optionnel)
            severity: Sévérité (défaut selon DEFAULT_SEVERITIES)
            metadata: Contexte additionnel

        Returns:
            Alerte enregistrée

        Raises:
            AlertDispatcherError: Si tier ou message vide
        """
        if not tier or not message:
            raise AlertDispatcherError("tier et message sont obligatoires")

        alert = Alert(
            alert_id=str(uuid.uuid4()),
            kind=kind,
            severity=severity or self.DEFAULT_SEVERITIES.get(kind, AlertSeverity.MEDIUM),
            tier=tier,
            message=message,
            timestamp=datetime.now(timezone.utc),
            member_id=member_id,
            metadata=dict(metadata or {}),
        )
        self._alerts.append(alert)

        self._logger.error(
            f"Alert raised: {kind.value}",
            correlation_id=member_id or tier,
            alert_id=alert.alert_id,
            tier=tier,
            member_id=member_id,
            severity=alert.severity.value,
            detail=message,
        )

        for notifier in self._notifiers:
            try:
                await notifier(alert)
            except Exception as e:
                self._logger.warn(
                    "Alert notifier failed",
                    alert_id=alert.alert_id,
                    error=str(e),
                )

        return alert

    def get_alerts(self, kind: Optional[AlertKind] = None) -> List[Alert]:
        """
        Récupère les alertes levées, dans l'ordre.

        Args:
            kind: Filtre optionnel par type
        """
        if kind is None:
            return list(self._alerts)
        return [a for a in self._alerts if a.kind == kind]

    def count(self, kind: Optional[AlertKind] = None) -> int:
        """Nombre d'alertes levées (filtrées par type si précisé)."""
        return len(self.get_alerts(kind))

    def clear(self) -> int:
        """
        Vide l'historique des alertes.

        Returns:
            Nombre d'alertes supprimées.
        """
        count = len(self._alerts)
        self._alerts.clear()
        return count
