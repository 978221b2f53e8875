import logging
from functools import lru_cache
from typing import Optional, Tuple

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .core.config import settings
from .exceptions import AuthenticationRequired
from .application.ports.appointments_repo import AppointmentChangeFeed, AppointmentRepository
from .application.ports.businesses_repo import BusinessRepository
from .application.ports.identity_provider import IdentityProvider
from .application.services.availability_service import AvailabilityService
from .application.services.booking_service import BookingService
from .application.services.calendar_service import CalendarService
from .infrastructure.audit.std_logger import StdAuditLogger

logger = logging.getLogger(__name__)

# Auth scheme
oauth2_scheme = HTTPBearer(auto_error=False)

Stores = Tuple[BusinessRepository, AppointmentRepository, Optional[AppointmentChangeFeed]]


def _memory_stores() -> Stores:
    from .infrastructure.persistence.memory.scheduling_store import InMemorySchedulingStore

    store = InMemorySchedulingStore()
    return store, store, store


def _firestore_stores() -> Stores:
    from firebase_admin import firestore, firestore_async

    from .infrastructure.firebase_app import get_firebase_app
    from .infrastructure.persistence.firestore.appointments_repository_firestore import (
        FirestoreAppointmentChangeFeed,
        FirestoreAppointmentsRepository,
    )
    from .infrastructure.persistence.firestore.businesses_repository_firestore import FirestoreBusinessRepository

    app = get_firebase_app()
    db = firestore_async.client(app)
    return (
        FirestoreBusinessRepository(
            db,
            default_capacity=settings.DEFAULT_SLOT_CAPACITY,
            default_slot_minutes=settings.DEFAULT_SLOT_MINUTES,
        ),
        FirestoreAppointmentsRepository(db),
        # snapshot listeners only exist on the sync client
        FirestoreAppointmentChangeFeed(firestore.client(app)),
    )


def _sql_stores() -> Stores:
    from .database import get_engine
    from .infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
    from .infrastructure.persistence.sqlalchemy.repositories.businesses_repository_sql import SqlBusinessRepository

    engine = get_engine()
    return SqlBusinessRepository(engine), SqlAppointmentsRepository(engine), None


_BACKENDS = {
    "memory": _memory_stores,
    "firestore": _firestore_stores,
    "sql": _sql_stores,
}


@lru_cache()
def get_stores() -> Stores:
    backend = settings.STORE_BACKEND.lower()
    if backend not in _BACKENDS:
        raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}', expected one of {sorted(_BACKENDS)}")
    logger.info(f"Using {backend} scheduling store")
    return _BACKENDS[backend]()


def get_availability_service(stores: Stores = Depends(get_stores)) -> AvailabilityService:
    business_repo, appointments_repo, _ = stores
    return AvailabilityService(
        business_repo=business_repo,
        appointments_repo=appointments_repo,
        timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
    )


def get_booking_service(stores: Stores = Depends(get_stores)) -> BookingService:
    business_repo, appointments_repo, _ = stores
    return BookingService(
        appointments_repo=appointments_repo,
        business_repo=business_repo,
        audit=StdAuditLogger(),
        timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
    )


def get_calendar_service(stores: Stores = Depends(get_stores)) -> CalendarService:
    business_repo, appointments_repo, change_feed = stores
    return CalendarService(
        business_repo=business_repo,
        appointments_repo=appointments_repo,
        change_feed=change_feed,
        window_days=settings.CALENDAR_WINDOW_DAYS,
        timezone_name=settings.CALENDAR_TIMEZONE,
        timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_identity_provider() -> IdentityProvider:
    from .infrastructure.auth.firebase_identity import FirebaseIdentityProvider

    return FirebaseIdentityProvider()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(oauth2_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> str:
    """Dependency to get the signed-in user id from a Firebase ID token"""
    if not credentials or not credentials.credentials:
        raise AuthenticationRequired()

    user_id = identity.verify(credentials.credentials)
    if not user_id:
        logger.warning("ID token verification failed - invalid or expired token")
        raise AuthenticationRequired("Invalid or expired token")
    return user_id


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(oauth2_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Optional[str]:
    """Like get_current_user, but anonymous callers get None"""
    if not credentials or not credentials.credentials:
        return None
    return get_current_user(credentials, identity)
