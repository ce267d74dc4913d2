"""
TIERWATCH - HA - Traffic Router

Adaptateurs vers le backend pool (Application Gateway / Load Balancer).

Règles:
    - set_member_active idempotent: état courant = succès sans appel
    - Tout échec de l'appel externe devient RoutingError (retry côté
      FailoverController)
    - Backend pool éventuellement cohérent: l'Ack porte le délai de
      propagation attendu (intervalle de sonde plateforme, ~60s)
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tierwatch.ha.interfaces import Ack, ITrafficRouter, PoolClient, TierName
from tierwatch.ha.member_registry import MemberRegistry
from tierwatch.logging import StructuredLogger, get_logger


class RoutingError(Exception):
    """Échec d'un changement de rotation."""

    def __init__(self, member_id: str, message: str) -> None:
        self.member_id = member_id
        super().__init__(f"Routing failed for {member_id}: {message}")


class InMemoryTrafficRouter(ITrafficRouter):
    """
    Active set en mémoire, autoritaire.

    Utilisé pour les tests, l'environnement docker-compose local et les
    exécutions à blanc du harnais.
    """

    def __init__(self, initial_active: Optional[Iterable[str]] = None) -> None:
        self._active: Set[str] = set(initial_active or [])
        self._history: List[Tuple[str, bool]] = []

    async def set_member_active(self, member_id: str, active: bool) -> Ack:
        """Ajoute ou retire un membre de l'active set."""
        changed = (member_id in self._active) != active
        if changed:
            if active:
                self._active.add(member_id)
            else:
                self._active.discard(member_id)
            self._history.append((member_id, active))

        return Ack(
            member_id=member_id,
            active=active,
            changed=changed,
            acknowledged_at=datetime.now(timezone.utc),
        )

    def is_active(self, member_id: str) -> bool:
        return member_id in self._active

    def active_members(self) -> Set[str]:
        """Copie de l'active set."""
        return set(self._active)

    def get_history(self) -> List[Tuple[str, bool]]:
        """Changements effectifs (member_id, active) dans l'ordre."""
        return list(self._history)


class BackendPoolRouter(ITrafficRouter):
    """
    Routeur délégant à un client backend pool injecté.

    Le client encapsule l'appel SDK Azure concret
    (pool_name, member_id, endpoint, active).

    Example:
        router = BackendPoolRouter(
            pool_client=azure_pool_update,
            registry=registry,
            pool_names={TierName.WEB: "web-backend-pool", TierName.APP: "app-backend-pool"},
        )
    """

    DEFAULT_PROPAGATION_DELAY_SECONDS: float = 60.0

    def __init__(
        self,
        registry: MemberRegistry,
        pool_names: Dict[TierName, str],
        pool_client: Optional[PoolClient] = None,
        propagation_delay_seconds: float = DEFAULT_PROPAGATION_DELAY_SECONDS,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            registry: Registre (résolution endpoint et tier)
            pool_names: Nom du backend pool par tier
            pool_client: Client SDK injectable (pour tests)
            propagation_delay_seconds: Délai de propagation annoncé dans l'Ack
            logger: Logger structuré
        """
        self._registry = registry
        self._pool_names = dict(pool_names)
        self._pool_client = pool_client or self._default_pool_client
        self._propagation_delay = propagation_delay_seconds
        self._logger = logger or get_logger("ha.traffic_router")
        self._confirmed: Dict[str, bool] = {}

    async def _default_pool_client(self, pool_name: str, member_id: str, endpoint: str, active: bool) -> None:
        """Client par défaut: aucun SDK configuré."""
        raise RoutingError(member_id, "Backend pool client not configured")

    async def set_member_active(self, member_id: str, active: bool) -> Ack:
        """
        Met à jour l'appartenance au backend pool.

        Raises:
            NotFoundError: Si member_id inconnu
            RoutingError: Pool non configuré pour le tier ou échec SDK
        """
        member = self._registry.get(member_id)

        if self._confirmed.get(member_id) == active:
            return Ack(
                member_id=member_id,
                active=active,
                changed=False,
                acknowledged_at=datetime.now(timezone.utc),
            )

        pool_name = self._pool_names.get(member.tier)
        if not pool_name:
            raise RoutingError(member_id, f"No backend pool configured for tier {member.tier.value}")

        try:
            await self._pool_client(pool_name, member_id, member.endpoint, active)
        except RoutingError:
            raise
        except Exception as e:
            raise RoutingError(member_id, f"{type(e).__name__}: {e}") from e

        self._confirmed[member_id] = active
        self._logger.info(
            "Backend pool updated",
            correlation_id=member_id,
            pool=pool_name,
            active=active,
            propagation_delay_seconds=self._propagation_delay,
        )

        return Ack(
            member_id=member_id,
            active=active,
            changed=True,
            acknowledged_at=datetime.now(timezone.utc),
            propagation_delay_seconds=self._propagation_delay,
        )

    def confirmed_state(self, member_id: str) -> Optional[bool]:
        """Dernier état confirmé par le SDK, None si jamais appelé."""
        return self._confirmed.get(member_id)
