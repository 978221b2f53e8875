from typing import Optional, Dict, Any
import logging

from firebase_admin import auth as fb_auth

from ...application.ports.identity_provider import IdentityProvider
from ..firebase_app import get_firebase_app
from ...exceptions import TransientIOError


logger = logging.getLogger(__name__)


def extract_uid_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """The stable user id carried by decoded Firebase claims."""
    return claims.get("uid") or claims.get("sub")


class FirebaseIdentityProvider(IdentityProvider):
    def verify(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            decoded = fb_auth.verify_id_token(token, app=get_firebase_app())
        except (ValueError, fb_auth.InvalidIdTokenError, fb_auth.ExpiredIdTokenError, fb_auth.RevokedIdTokenError) as e:
            logger.warning(f"Firebase token verification failed: {e}")
            return None
        except fb_auth.CertificateFetchError as e:
            raise TransientIOError(f"Could not fetch token signing certificates: {e}")
        return extract_uid_from_claims(decoded)
