"""
Step-based reconciliation of composite resources.

One pass walks an ordered list of named steps:

1. ``Validated`` - parse and validate the declared ``CompositeSpec``
2. ``CompositeStructureUpdated`` - register/update the spec in the KV store
3. ``<Name>Updated`` - one per downstream notifier, told the member namespaces

Each finished step is recorded as a COMPLETED condition and persisted before
the next one starts; completed steps are skipped by later passes, which makes
a pass safe to resume after a crash between any two steps.

Resulting phase:

    PENDING → INVALID_CONFIGURATION   validation failed (waits for a spec change)
            → BACKING_OFF             retryable failure (caller re-invokes later)
            → UPDATED                 all steps done, or the integration is disabled
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence, Set

from loguru import logger

from ..errors import IntegrationDisabledError
from ..metrics import RECONCILE_PASS_TOTAL, RECONCILE_STEP_TOTAL
from .collaborators import DownstreamNotifier, ResourceUpdater, StatusWriter
from .resource import ConditionStatus, Phase, ReconciliationResource
from .spec import CompositeSpec
from .state import CurrentResourceAccessor

VALIDATED_STEP = "Validated"
STRUCTURE_UPDATED_STEP = "CompositeStructureUpdated"


def notifier_step_name(name: str) -> str:
    return f"{name[:1].upper()}{name[1:]}Updated"


@dataclass(frozen=True)
class PassResult:
    phase: Phase
    failed_step: Optional[str] = None

    @property
    def retry(self) -> bool:
        return self.phase is Phase.BACKING_OFF


class ReconciliationStepMachine:
    """Runs reconciliation passes for composite resources.

    Callers must serialize passes per resource identity (see ``ReconcileScheduler``).

    Args:
        updater: KV registration and membership lookups
        notifiers: Downstream integrations, notified in order
        status_writer: Persists status after every step and at the end of a pass
        accessor: Receives the resource at the end of every pass
    """

    def __init__(
        self,
        updater: ResourceUpdater,
        notifiers: Sequence[DownstreamNotifier] = (),
        *,
        status_writer: Optional[StatusWriter] = None,
        accessor: Optional[CurrentResourceAccessor] = None,
    ) -> None:
        self._updater = updater
        self._notifiers = list(notifiers)
        self._status_writer = status_writer
        self._accessor = accessor

    @property
    def step_names(self) -> list[str]:
        return [VALIDATED_STEP, STRUCTURE_UPDATED_STEP] + [
            notifier_step_name(n.name) for n in self._notifiers
        ]

    async def reconcile(self, resource: ReconciliationResource) -> PassResult:
        """Run one pass; never raises except on cancellation."""
        logger.info(f"Reconcile composite resource {resource.identity}")
        try:
            result = await self._run_pass(resource)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(f"Unexpected error reconciling {resource.identity}")
            resource.status.phase = Phase.BACKING_OFF
            result = PassResult(Phase.BACKING_OFF)
            await self._persist_quietly(resource, exc)

        RECONCILE_PASS_TOTAL.labels(result.phase.value).inc()
        if self._accessor is not None:
            self._accessor.publish(resource)
        return result

    # ---------- pass

    async def _run_pass(self, resource: ReconciliationResource) -> PassResult:
        self._reset_if_spec_changed(resource)

        # 1. validate
        validated = resource.is_completed(VALIDATED_STEP)
        try:
            spec = CompositeSpec.from_mapping(resource.spec)
            if not validated:
                spec.ensure_valid()
        except Exception as exc:
            logger.warning(f"Invalid composite spec for {resource.identity}: {exc}")
            return await self._fail(
                resource,
                VALIDATED_STEP,
                Phase.INVALID_CONFIGURATION,
                reason="error validate composite structure",
                message=str(exc),
            )
        if not validated:
            await self._complete(resource, VALIDATED_STEP)
        logger.info(f"Parsed composite specification: {spec.describe()}")

        # 2. register / update structure in KV
        if not resource.is_completed(STRUCTURE_UPDATED_STEP):
            try:
                await self._updater.register_or_update(spec)
            except IntegrationDisabledError as exc:
                logger.warning("KV integration is disabled; skip composite resource processing")
                return await self._fail(
                    resource, STRUCTURE_UPDATED_STEP, Phase.UPDATED, "integration disabled", str(exc)
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"KV structure update failed for {resource.identity}: {exc}")
                return await self._fail(
                    resource, STRUCTURE_UPDATED_STEP, Phase.BACKING_OFF, "kv update error", str(exc)
                )
            await self._complete(resource, STRUCTURE_UPDATED_STEP)

        # 3. fan-out
        pending = [n for n in self._notifiers if not resource.is_completed(notifier_step_name(n.name))]
        if pending:
            result = await self._notify(resource, spec, pending)
            if result is not None:
                return result

        logger.info(f"Composite resource {resource.identity} successfully processed")
        resource.status.phase = Phase.UPDATED
        await self._persist(resource)
        return PassResult(Phase.UPDATED)

    async def _notify(
        self,
        resource: ReconciliationResource,
        spec: CompositeSpec,
        pending: Sequence[DownstreamNotifier],
    ) -> Optional[PassResult]:
        first_step = notifier_step_name(pending[0].name)
        composite_id = spec.composite_id
        try:
            members: Set[str] = set(await self._updater.members_of(composite_id))
        except IntegrationDisabledError as exc:
            logger.warning("KV integration is disabled; cannot resolve composite members")
            return await self._fail(resource, first_step, Phase.UPDATED, "integration disabled", str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Failed to resolve members of composite '{composite_id}': {exc}")
            return await self._fail(resource, first_step, Phase.BACKING_OFF, "members lookup error", str(exc))

        for notifier in pending:
            step = notifier_step_name(notifier.name)
            try:
                logger.info(f"Send composite structure to {notifier.name}")
                await notifier.notify(composite_id, members)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Notification failed for {notifier.name}: {exc}")
                return await self._fail(
                    resource, step, Phase.BACKING_OFF, f"{notifier.name} notify error", str(exc)
                )
            await self._complete(resource, step)
        return None

    # ---------- status helpers

    def _reset_if_spec_changed(self, resource: ReconciliationResource) -> None:
        status = resource.status
        if status.observed_generation == resource.generation:
            return
        if status.observed_generation == 0:
            # first observation: keep whatever progress is already recorded
            status.observed_generation = resource.generation
            return
        if status.conditions:
            logger.info(
                f"Spec of {resource.identity} changed (generation {status.observed_generation} → "
                f"{resource.generation}); restarting steps"
            )
        status.conditions.clear()
        status.phase = Phase.PENDING
        status.observed_generation = resource.generation

    async def _complete(self, resource: ReconciliationResource, step: str) -> None:
        resource.set_condition(step, ConditionStatus.COMPLETED)
        RECONCILE_STEP_TOTAL.labels(step, "completed").inc()
        await self._persist(resource)

    async def _fail(
        self,
        resource: ReconciliationResource,
        step: str,
        phase: Phase,
        reason: str,
        message: str,
    ) -> PassResult:
        resource.set_condition(step, ConditionStatus.FAILED, reason=reason, message=message)
        resource.status.phase = phase
        RECONCILE_STEP_TOTAL.labels(step, "failed").inc()
        await self._persist(resource)
        return PassResult(phase, failed_step=step)

    async def _persist(self, resource: ReconciliationResource) -> None:
        if self._status_writer is not None:
            await self._status_writer.update_status(resource)

    async def _persist_quietly(self, resource: ReconciliationResource, cause: Exception) -> None:
        try:
            await self._persist(resource)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Failed to store status of {resource.identity} after {cause!r}: {exc}")
