"""
TIERWATCH - Harnais de résilience multi-tiers

Moteur de décision embarquable qui remplace les exercices manuels
"arrêter la VM, attendre, curl" du workshop Azure trois tiers:
- Sondes de santé HTTP/TCP avec hystérésis
- Rotation des pools de load balancer (tiers Web/App)
- Quorum du replica set MongoDB (tier Db)
- Incidents pour intervention manuelle
"""

__version__ = "0.4.0"
