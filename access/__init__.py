"""
Gym Access Package

Issues and verifies per-gym QR sessions, turns scans into ledger charges,
and holds the role permission table and identity collaborator.
"""

from .permissions import Action, allowed, can_manage_gym
from .identity import Identity, IdentityProvider, TokenIdentityProvider
from .qr import QRSessionManager, QRPayload, QRStatus, IssuedCode, parse_payload, render_qr_image
from .gateway import AccessGateway, ScanResult, ScanStage

__all__ = [
    "Action",
    "allowed",
    "can_manage_gym",
    "Identity",
    "IdentityProvider",
    "TokenIdentityProvider",
    "QRSessionManager",
    "QRPayload",
    "QRStatus",
    "IssuedCode",
    "parse_payload",
    "render_qr_image",
    "AccessGateway",
    "ScanResult",
    "ScanStage",
]
