from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from portal.core.config import FANOUT_RELAY, SEQUENCE_BACKEND
from portal.core.redis_config import get_redis_client
from portal.database.db import engine
from portal.domain.actors import Registrant, Reviewer, Role, actor_for
from portal.services.admission import AdmissionController
from portal.services.capacity import CapacityLedger
from portal.services.eligibility import SqlEventDirectory
from portal.services.fanout import CeleryRelaySink, FanoutNotifier, SubscriberHub
from portal.services.lifecycle import LifecycleService
from portal.services.sequence import RedisSequenceAllocator, SequenceAllocator, SqlSequenceAllocator


@lru_cache
def get_notifier() -> FanoutNotifier:
    sinks = []
    if FANOUT_RELAY:
        from portal.tasks import relay_lifecycle_event

        sinks.append(CeleryRelaySink(relay_lifecycle_event))
    return FanoutNotifier(SubscriberHub(), sinks=sinks)


@lru_cache
def get_sequence_allocator() -> SequenceAllocator:
    if SEQUENCE_BACKEND == "database":
        return SqlSequenceAllocator(engine)
    return RedisSequenceAllocator(get_redis_client())


def get_admission_controller(
    notifier: FanoutNotifier = Depends(get_notifier),
    allocator: SequenceAllocator = Depends(get_sequence_allocator),
) -> AdmissionController:
    return AdmissionController(CapacityLedger(), allocator, SqlEventDirectory(), notifier)


def get_lifecycle_service(notifier: FanoutNotifier = Depends(get_notifier)) -> LifecycleService:
    return LifecycleService(CapacityLedger(), SqlEventDirectory(), notifier)


def get_actor(x_subject_id: int = Header(..., ge=1), x_role: Role = Header(Role.STUDENT)) -> Registrant | Reviewer:
    """Identity is established upstream; these headers carry its verdict."""
    return actor_for(x_subject_id, x_role)


def get_registrant(actor: Registrant | Reviewer = Depends(get_actor)) -> Registrant:
    if not isinstance(actor, Registrant):
        raise HTTPException(status_code=403, detail="Only students can register")
    return actor
