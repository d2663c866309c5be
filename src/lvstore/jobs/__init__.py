"""Job controllers: fracture recovery and fracture merge."""

from lvstore.jobs.merge_fracture import MergeFractureJobController
from lvstore.jobs.params import MergeFractureJobParameters, RecoverFractureJobParameters
from lvstore.jobs.recover_buddy import RecoverFractureFromBuddyJobController
from lvstore.jobs.recover_foreign import RecoverFractureForeignJobController
from lvstore.jobs.recovery import (
    RecoveryStrategy,
    create_recovery_controller,
    find_recovery_source,
    select_recovery_strategy,
)

__all__ = [
    "MergeFractureJobController",
    "MergeFractureJobParameters",
    "RecoverFractureJobParameters",
    "RecoverFractureFromBuddyJobController",
    "RecoverFractureForeignJobController",
    "RecoveryStrategy",
    "create_recovery_controller",
    "find_recovery_source",
    "select_recovery_strategy",
]
