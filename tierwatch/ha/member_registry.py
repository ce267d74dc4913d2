"""
TIERWATCH - HA - Member Registry

Registre des membres par tier, unique propriétaire des Member.

Règles:
    - Membres enregistrés au démarrage depuis la topologie statique,
      jamais supprimés; registre scellé après le démarrage
    - Écritures sérialisées par un verrou (jamais tenu pendant un await)
    - Lectures sans verrou: les Member sont immuables et remplacés
      atomiquement (pas de lecture partielle)
    - member_id inconnu = erreur de programmation (NotFoundError)
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tierwatch.ha.interfaces import (
    DbRole,
    IMemberRegistry,
    Member,
    ProbeObservation,
    StateTransitionEvent,
    Tier,
    TierName,
)


class RegistryError(Exception):
    """Erreur d'enregistrement (topologie incohérente)."""

    pass


class NotFoundError(Exception):
    """Membre ou tier inconnu."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Unknown {kind}: {identifier}")


class MemberRegistry(IMemberRegistry):
    """
    Registre des membres avec discipline single writer.

    Seul le FailoverController appelle apply_transition, record_probe
    et update_role.

    Example:
        registry = MemberRegistry()
        registry.register_tier(TierName.WEB)
        registry.register_member(Member(id="vm-web-1", tier=TierName.WEB, endpoint="10.0.1.4"))
        registry.seal()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._members: Dict[str, Member] = {}
        self._tier_members: Dict[TierName, List[str]] = {}
        self._quorum_tiers: Dict[TierName, bool] = {}
        self._sealed = False

    # ══════════════════════════════════════════════════════════════════════════
    # Enregistrement (démarrage)
    # ══════════════════════════════════════════════════════════════════════════

    def register_tier(self, name: TierName, quorum_required: Optional[bool] = None) -> None:
        """
        Déclare un tier.

        Args:
            name: Nom du tier
            quorum_required: Sémantique replica set (défaut: True pour Db seulement)

        Raises:
            RegistryError: Si tier déjà déclaré ou registre scellé
        """
        with self._lock:
            self._ensure_not_sealed()
            if name in self._tier_members:
                raise RegistryError(f"Tier already registered: {name.value}")
            self._tier_members[name] = []
            self._quorum_tiers[name] = name == TierName.DB if quorum_required is None else quorum_required

    def register_member(self, member: Member) -> Member:
        """
        Enregistre un membre dans son tier.

        Les membres Db sans rôle reçoivent le rôle UNKNOWN, les membres
        Web/App n'ont jamais de rôle.

        Raises:
            RegistryError: Id dupliqué, tier inconnu ou registre scellé
        """
        if not member.id or not member.id.strip():
            raise RegistryError("Member id cannot be empty")
        if member.votes < 0:
            raise RegistryError(f"Member {member.id}: votes cannot be negative")

        if member.tier == TierName.DB:
            if member.role is None:
                member = replace(member, role=DbRole.UNKNOWN)
        elif member.role is not None:
            member = replace(member, role=None)

        with self._lock:
            self._ensure_not_sealed()
            if member.tier not in self._tier_members:
                raise RegistryError(f"Unknown tier for member {member.id}: {member.tier.value}")
            if member.id in self._members:
                raise RegistryError(f"Duplicate member id: {member.id}")
            self._members[member.id] = member
            self._tier_members[member.tier].append(member.id)

        return member

    def seal(self) -> None:
        """Interdit tout enregistrement ultérieur."""
        with self._lock:
            self._sealed = True

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def _ensure_not_sealed(self) -> None:
        if self._sealed:
            raise RegistryError("Registry is sealed: topology is fixed after startup")

    # ══════════════════════════════════════════════════════════════════════════
    # Lectures
    # ══════════════════════════════════════════════════════════════════════════

    def get(self, member_id: str) -> Member:
        """
        Récupère un membre.

        Raises:
            NotFoundError: Si member_id inconnu
        """
        member = self._members.get(member_id)
        if member is None:
            raise NotFoundError("member", member_id)
        return member

    def snapshot(self, tier: TierName) -> List[Member]:
        """
        Membres d'un tier dans l'ordre d'enregistrement.

        Raises:
            NotFoundError: Si tier inconnu
        """
        member_ids = self._tier_members.get(tier)
        if member_ids is None:
            raise NotFoundError("tier", tier.value)
        return [self._members[member_id] for member_id in list(member_ids)]

    def get_tier(self, tier: TierName) -> Tier:
        """
        Vue du tier avec le nombre de votes.

        Raises:
            NotFoundError: Si tier inconnu
        """
        members = self.snapshot(tier)
        return Tier(
            name=tier,
            quorum_required=self._quorum_tiers[tier],
            voting_members=sum(m.votes for m in members),
            member_ids=tuple(m.id for m in members),
        )

    def tiers(self) -> List[TierName]:
        """Tiers déclarés, dans l'ordre de déclaration."""
        return list(self._tier_members.keys())

    def all_members(self) -> List[Member]:
        """Tous les membres, tier par tier."""
        result: List[Member] = []
        for tier in self.tiers():
            result.extend(self.snapshot(tier))
        return result

    # ══════════════════════════════════════════════════════════════════════════
    # Écritures (FailoverController uniquement)
    # ══════════════════════════════════════════════════════════════════════════

    def apply_transition(self, event: StateTransitionEvent) -> Member:
        """
        Applique une transition d'état.

        Idempotent: si le membre est déjà dans to_state, il est retourné
        inchangé (même instance).

        Args:
            event: Transition publiée par le moniteur

        Returns:
            Member résultant

        Raises:
            NotFoundError: Si member_id inconnu
        """
        with self._lock:
            current = self.get(event.member_id)
            if current.health_state == event.to_state:
                return current

            updated = replace(
                current,
                health_state=event.to_state,
                last_transition_at=event.timestamp,
            )
            # Compteurs déjà plus récents via record_probe: conservés
            if current.last_probe_at is None or event.timestamp >= current.last_probe_at:
                updated = replace(
                    updated,
                    consecutive_failures=event.consecutive_failures,
                    consecutive_successes=event.consecutive_successes,
                    last_probe_at=event.timestamp,
                )
            self._members[event.member_id] = updated
            return updated

    def record_probe(self, observation: ProbeObservation) -> Member:
        """
        Met à jour les compteurs d'hystérésis après une sonde.

        Une observation plus ancienne que last_probe_at est ignorée.

        Raises:
            NotFoundError: Si member_id inconnu
        """
        with self._lock:
            current = self.get(observation.member_id)
            if current.last_probe_at is not None and observation.probed_at < current.last_probe_at:
                return current

            updated = replace(
                current,
                consecutive_failures=observation.consecutive_failures,
                consecutive_successes=observation.consecutive_successes,
                last_probe_at=observation.probed_at,
            )
            self._members[observation.member_id] = updated
            return updated

    def update_role(self, member_id: str, role: DbRole) -> Member:
        """
        Met à jour le rôle replica set d'un membre Db.

        Raises:
            NotFoundError: Si member_id inconnu
            RegistryError: Si le membre n'est pas du tier Db
        """
        with self._lock:
            current = self.get(member_id)
            if current.tier != TierName.DB:
                raise RegistryError(f"Member {member_id} is not a Db member, no replica-set role")
            if current.role == role:
                return current

            updated = replace(current, role=role)
            self._members[member_id] = updated
            return updated

    def get_status(self) -> Dict[str, object]:
        """Vue sérialisable du registre."""
        return {
            "sealed": self._sealed,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "tiers": {
                tier.value: [m.to_dict() for m in self.snapshot(tier)] for tier in self.tiers()
            },
        }
