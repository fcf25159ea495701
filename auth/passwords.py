"""
auth/passwords.py -- Password hashing and the credential service.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force expensive for low-entropy secrets. The _DUMMY_HASH
       constant enables timing equalization in LocalStrategy so response time
       does not reveal whether an email is registered.

  Async boundary: bcrypt and SQLAlchemy calls are blocking. CredentialService
       runs them through starlette's run_in_threadpool so the orchestrator can
       await each step without stalling the event loop.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from auth.errors import DuplicateIdentity, InternalError
from auth.models import SignupRequest, User
from auth.store import UserStore

logger = logging.getLogger("accessledger.auth")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises InternalError if bcrypt itself fails. Signup enforces a 72-byte
    maximum (PasswordPolicy) because bcrypt 4.x rejects longer inputs.
    """
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise InternalError(f"password hashing failed: {exc}") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises: a mismatch, a malformed hash or an over-long input all
    return False.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("accessledger_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt check against a dummy hash.

    Call when the account does not exist (or has no local password) so the
    response takes as long as a real password check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Credential service
# ---------------------------------------------------------------------------


class CredentialService:
    """Async facade over password hashing and the user store.

    The orchestrator and the strategies depend on this class only; they never
    see UserStore or SQLAlchemy exceptions.
    """

    def __init__(self, store: UserStore) -> None:
        self._store = store

    async def hash(self, plain: str) -> str:
        return await run_in_threadpool(hash_password, plain)

    async def verify(self, plain: str, hashed: str | None) -> bool:
        if not hashed:
            await run_in_threadpool(equalize_timing, plain)
            return False
        return await run_in_threadpool(verify_password, plain, hashed)

    async def create_user(self, request: SignupRequest, hashed_password: str) -> User:
        """Persist a new account and return it with its assigned ID.

        Raises:
            DuplicateIdentity: the email is already registered.
            InternalError:     any other persistence failure.
        """
        user = User(
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            hashed_password=hashed_password,
        )
        try:
            user.id = await run_in_threadpool(self._store.create_user, user)
        except IntegrityError as exc:
            raise DuplicateIdentity(request.email) from exc
        except SQLAlchemyError as exc:
            raise InternalError(f"could not store account: {exc.__class__.__name__}") from exc
        logger.info("Account created for %s (id=%s)", user.email, user.id)
        return user

    # Lookups raise SQLAlchemyError unchanged; the strategies classify those
    # as provider failures.

    async def find_by_email(self, email: str) -> User | None:
        return await run_in_threadpool(self._store.get_by_email, email)

    async def find_by_oauth(self, provider: str, subject: str) -> User | None:
        return await run_in_threadpool(self._store.get_by_oauth, provider, subject)

    async def link_oauth(self, user: User, provider: str, subject: str) -> User:
        await run_in_threadpool(self._store.link_oauth, user.id, provider, subject)
        user.oauth_provider = provider
        user.oauth_subject = subject
        logger.info("Linked %s identity to %s", provider, user.email)
        return user
