"""
TIERWATCH - HA - Replica Status Poller

Flux des rôles replica set MongoDB (équivalent rs.status()).

Le contrôleur ne déduit jamais les rôles: il observe l'élection faite
par le replica set lui-même. Un échec de la source est loggé et laisse
les rôles inchangés.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from tierwatch.ha.failover_controller import FailoverController
from tierwatch.ha.interfaces import DbRole, Member, ReplicaStatusSource, TierName
from tierwatch.ha.member_registry import MemberRegistry
from tierwatch.ha.probe_client import ProbeClient, ProbeTargetError
from tierwatch.logging import StructuredLogger, get_logger


class ReplicaStatusError(Exception):
    """Document rs.status() invalide."""

    pass


# stateStr MongoDB → rôle
STATE_ROLES: Dict[str, DbRole] = {
    "PRIMARY": DbRole.PRIMARY,
    "SECONDARY": DbRole.SECONDARY,
}


def parse_replica_status(status: Dict[str, Any], members: List[Member]) -> Dict[str, DbRole]:
    """
    Associe les membres rapportés par rs.status() aux membres Db.

    La correspondance se fait sur (host, port) entre le champ "name"
    du document et l'endpoint du membre. Un membre Db absent du
    document reçoit le rôle UNKNOWN; tout stateStr autre que PRIMARY
    ou SECONDARY (RECOVERING, STARTUP2, "(not reachable/healthy)"...)
    aussi.

    Args:
        status: Document rs.status()
        members: Membres du tier Db

    Returns:
        Rôle par member_id

    Raises:
        ReplicaStatusError: Si le document n'a pas de liste "members"
    """
    reported = status.get("members") if isinstance(status, dict) else None
    if not isinstance(reported, list):
        raise ReplicaStatusError("rs.status() document has no 'members' list")

    by_address: Dict[Tuple[str, int], DbRole] = {}
    for entry in reported:
        if not isinstance(entry, dict) or "name" not in entry:
            continue
        try:
            address = ProbeClient.parse_tcp_target(str(entry["name"]))
        except ProbeTargetError:
            continue
        by_address[address] = STATE_ROLES.get(str(entry.get("stateStr", "")).upper(), DbRole.UNKNOWN)

    roles: Dict[str, DbRole] = {}
    for member in members:
        try:
            address = ProbeClient.parse_tcp_target(member.endpoint)
        except ProbeTargetError:
            roles[member.id] = DbRole.UNKNOWN
            continue
        roles[member.id] = by_address.get(address, DbRole.UNKNOWN)

    return roles


class ReplicaStatusPoller:
    """
    Interroge périodiquement la source rs.status().

    Example:
        poller = ReplicaStatusPoller(mongo_status, registry, controller)
        await poller.start()
    """

    DEFAULT_INTERVAL_SECONDS: float = 10.0
    TIMEOUT_SECONDS: float = 5.0

    def __init__(
        self,
        source: ReplicaStatusSource,
        registry: MemberRegistry,
        controller: FailoverController,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        tier: TierName = TierName.DB,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._source = source
        self._registry = registry
        self._controller = controller
        self._interval = interval_seconds
        self._tier = tier
        self._logger = logger or get_logger("ha.replica_status")
        self._task: Optional[asyncio.Task] = None
        self._consecutive_errors = 0

    async def poll_once(self) -> Dict[str, DbRole]:
        """
        Interroge la source et applique les rôles.

        Returns:
            Rôles appliqués, vide si la source a échoué
        """
        try:
            status = await asyncio.wait_for(self._source(), timeout=self.TIMEOUT_SECONDS)
            roles = parse_replica_status(status, self._registry.snapshot(self._tier))
        except Exception as e:
            self._consecutive_errors += 1
            self._logger.warn(
                "Replica status unavailable, roles left unchanged",
                correlation_id=self._tier.value,
                error=f"{type(e).__name__}: {e}",
                consecutive_errors=self._consecutive_errors,
            )
            return {}

        self._consecutive_errors = 0
        changed = self._controller.apply_replica_roles(roles)
        if changed:
            self._logger.info(
                "Replica roles updated",
                correlation_id=self._tier.value,
                roles={m.id: m.role.value if m.role else None for m in changed},
            )
        return roles

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="replica-status")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors
