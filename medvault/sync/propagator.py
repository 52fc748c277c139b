"""
Authorization propagation between the Identity Registry and the Clinical
Record Store.

The registry is the source of truth for "is this doctor allowed to write"
and "is this patient active". The clinical store keeps a per-doctor flag
that is only a cache of the registry's answer. Two mechanisms keep the cache
in line:

- push sync: the registry calls ``push_authorize``/``push_revoke`` on every
  register/revoke. Without a configured sink this is a no-op; a failing
  sink aborts the registry mutation.
- pull reconciliation: before a clinical write, ``reconcile_doctor`` compares
  the cache with the registry, re-pushes a missed authorization, corrects a
  stale one, and returns the registry's verdict.

Every query against a peer fails closed: an unset or failing peer means
"not authorized" / "not active", never an exception to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..errors import RemoteUnavailableError
from ..subject import subject_fingerprint

logger = logging.getLogger(__name__)


class IdentityDirectory(Protocol):
    """Read side of the Identity Registry as seen by other components."""

    address: str

    async def is_doctor_authorized(self, doctor_id: str) -> bool: ...
    async def is_patient_active(self, patient_id: str) -> bool: ...


class AuthorizationSink(Protocol):
    """Entry points of a component that caches doctor authorization."""

    address: str

    async def authorize_doctor(self, doctor_id: str, *, caller: str) -> None: ...
    async def revoke_doctor(self, doctor_id: str, *, caller: str) -> None: ...
    async def is_doctor_authorized(self, doctor_id: str) -> bool: ...


@dataclass
class DoctorAuthorizationStatus:
    doctor_id: str
    registry_authorized: Optional[bool]
    cache_authorized: Optional[bool]
    authorized: bool


class AuthorizationPropagator:
    """Keeps a sink's authorization cache consistent with the directory."""

    def __init__(
        self,
        directory: Optional[IdentityDirectory] = None,
        sink: Optional[AuthorizationSink] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self.directory = directory
        self.sink = sink
        self.audit_service = audit_service or AuditService()

    def bind(
        self,
        directory: Optional[IdentityDirectory] = None,
        sink: Optional[AuthorizationSink] = None,
    ) -> None:
        """Wire peers after construction; ``None`` leaves a peer unchanged."""
        if directory is not None:
            self.directory = directory
        if sink is not None:
            self.sink = sink

    def is_directory(self, caller: str) -> bool:
        return self.directory is not None and caller == self.directory.address

    async def _peer_unavailable(self, operation: str, subject_id: str, error: Exception) -> None:
        logger.warning(
            "Peer unavailable during %s for %s, failing closed: %s",
            operation,
            subject_fingerprint(subject_id),
            error,
        )
        await self.audit_service.log_event(
            event_type="peer_unavailable",
            category=AuditCategory.SECURITY,
            action=operation,
            result="fail_closed",
            description=f"Cross-component {operation} failed; treated as unauthorized",
            resource_type="subject",
            resource_id=subject_fingerprint(subject_id),
            level=AuditLevel.DETAILED,
            details={"error": type(error).__name__},
        )

    async def _ask(
        self, operation: str, query: Optional[Callable[[str], Awaitable[bool]]], subject_id: str
    ) -> Optional[bool]:
        """Run a directory query; ``None`` means no definitive answer."""
        if query is None:
            return None
        try:
            return bool(await query(subject_id))
        except Exception as e:  # noqa: BLE001
            await self._peer_unavailable(operation, subject_id, e)
            return None

    async def _registry_says_authorized(self, doctor_id: str) -> Optional[bool]:
        query = self.directory.is_doctor_authorized if self.directory is not None else None
        return await self._ask("is_doctor_authorized", query, doctor_id)

    async def doctor_authorized(self, doctor_id: str) -> bool:
        """Live registry check; False when the registry is unset or failing."""
        return bool(await self._registry_says_authorized(doctor_id))

    async def patient_active(self, patient_id: str) -> bool:
        """Live registry check; False when the registry is unset or failing."""
        query = self.directory.is_patient_active if self.directory is not None else None
        return bool(await self._ask("is_patient_active", query, patient_id))

    async def _push(self, operation: str, doctor_id: str) -> None:
        if self.sink is None:
            logger.debug("No authorization sink configured; skipping %s", operation)
            return
        if self.directory is None:
            raise RemoteUnavailableError(f"Cannot {operation}: identity registry not bound")

        entry = self.sink.authorize_doctor if operation == "authorize" else self.sink.revoke_doctor
        try:
            await entry(doctor_id, caller=self.directory.address)
        except Exception as e:  # noqa: BLE001
            raise RemoteUnavailableError(f"Authorization {operation} sync failed: {e}") from e
        logger.info("Propagated %s for doctor %s", operation, subject_fingerprint(doctor_id))

    async def push_authorize(self, doctor_id: str) -> None:
        await self._push("authorize", doctor_id)

    async def push_revoke(self, doctor_id: str) -> None:
        await self._push("revoke", doctor_id)

    async def reconcile_doctor(self, doctor_id: str) -> bool:
        """Return whether ``doctor_id`` may write now, correcting the cache."""
        live = await self._registry_says_authorized(doctor_id)
        if live is None:
            return False
        if self.sink is None:
            return live

        cached = await self.sink.is_doctor_authorized(doctor_id)
        if live and not cached:
            logger.info("Syncing missed authorization for doctor %s", subject_fingerprint(doctor_id))
            try:
                await self.push_authorize(doctor_id)
            except RemoteUnavailableError as e:
                await self._peer_unavailable("reconcile_authorize", doctor_id, e)
                return False
            return await self.sink.is_doctor_authorized(doctor_id)

        if not live and cached:
            logger.warning("Clearing stale authorization for doctor %s", subject_fingerprint(doctor_id))
            try:
                await self.push_revoke(doctor_id)
            except RemoteUnavailableError as e:
                await self._peer_unavailable("reconcile_revoke", doctor_id, e)
            return False

        return live

    async def check_doctor_status(self, doctor_id: str) -> DoctorAuthorizationStatus:
        """Reconcile and report both views of ``doctor_id``'s authorization."""
        authorized = await self.reconcile_doctor(doctor_id)
        registry = await self._registry_says_authorized(doctor_id)
        cache = await self.sink.is_doctor_authorized(doctor_id) if self.sink is not None else None
        return DoctorAuthorizationStatus(
            doctor_id=doctor_id,
            registry_authorized=registry,
            cache_authorized=cache,
            authorized=authorized,
        )
