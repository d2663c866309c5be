"""Choosing how a damaged replica is recovered."""

from __future__ import annotations

from enum import Enum

from lvstore.core.errors import RecoveryError
from lvstore.core.logging import get_logger
from lvstore.core.models import ReplicaStatus
from lvstore.core.repository import MetadataRepository
from lvstore.core.settings import LVStoreSettings
from lvstore.execution.controller import JobController
from lvstore.jobs.params import RecoverFractureJobParameters
from lvstore.jobs.recover_buddy import RecoverFractureFromBuddyJobController
from lvstore.jobs.recover_foreign import RecoverFractureForeignJobController

logger = get_logger(__name__)


class RecoveryStrategy(str, Enum):
    BUDDY = "buddy"
    FOREIGN = "foreign"


def select_recovery_strategy(
    repository: MetadataRepository, damaged_scheme_id: int, source_scheme_id: int
) -> RecoveryStrategy:
    """BUDDY when both schemes belong to the same group, FOREIGN otherwise."""
    damaged = repository.get_replica_scheme(damaged_scheme_id)
    source = repository.get_replica_scheme(source_scheme_id)
    if damaged.group_id == source.group_id:
        return RecoveryStrategy.BUDDY
    return RecoveryStrategy.FOREIGN


def find_recovery_source(
    repository: MetadataRepository, fracture_id: int, damaged_scheme_id: int
) -> int:
    """Return the scheme id of a healthy replica to recover from.

    Buddies in the damaged scheme's group are preferred since they need no
    repartitioning; otherwise any healthy replica of another group of the
    same table is used.

    Raises:
        RecoveryError: No replica of the fracture is OK.
    """
    damaged = repository.get_replica_scheme(damaged_scheme_id)
    group = repository.get_replica_group(damaged.group_id)

    healthy: dict[int, int] = {}
    for replica in repository.get_all_replicas_by_fracture(fracture_id):
        if replica.status == ReplicaStatus.OK and replica.scheme_id != damaged_scheme_id:
            healthy[replica.scheme_id] = replica.replica_id

    for scheme in sorted(
        repository.get_all_replica_schemes_by_group(group.group_id), key=lambda s: s.scheme_id
    ):
        if scheme.scheme_id in healthy:
            return scheme.scheme_id

    for other in sorted(
        repository.get_all_replica_groups_by_table(group.table_id), key=lambda g: g.group_id
    ):
        if other.group_id == group.group_id:
            continue
        for scheme in sorted(
            repository.get_all_replica_schemes_by_group(other.group_id), key=lambda s: s.scheme_id
        ):
            if scheme.scheme_id in healthy:
                return scheme.scheme_id

    raise RecoveryError(
        f"fracture {fracture_id} has no healthy replica to recover scheme {damaged_scheme_id} from"
    )


def create_recovery_controller(
    repository: MetadataRepository,
    params: RecoverFractureJobParameters,
    settings: LVStoreSettings | None = None,
    **kwargs,
) -> JobController[RecoverFractureJobParameters]:
    """Build the controller matching the strategy for *params*."""
    strategy = select_recovery_strategy(
        repository, params.damaged_scheme_id, params.source_scheme_id,
    )
    logger.info(
        "recovery_strategy_selected",
        strategy=strategy.value,
        fracture_id=params.fracture_id,
        damaged_scheme_id=params.damaged_scheme_id,
        source_scheme_id=params.source_scheme_id,
    )
    if strategy is RecoveryStrategy.BUDDY:
        return RecoverFractureFromBuddyJobController(repository, settings, **kwargs)
    return RecoverFractureForeignJobController(repository, settings, **kwargs)


__all__ = [
    "RecoveryStrategy",
    "select_recovery_strategy",
    "find_recovery_source",
    "create_recovery_controller",
]
