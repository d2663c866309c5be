"""
lvstore - job orchestration and partition recovery for a replicated columnar store.

Table data is fractured by a monotonic key, replicated under several
physical layouts (replica schemes) and sub-partitioned across storage
nodes. This package runs the jobs that keep those replicas healthy:

- ``lvstore.execution`` - the job controller state machine and task polling
- ``lvstore.tasks`` - node-side task runners, their registry and the node worker
- ``lvstore.jobs`` - buddy recovery, cross-group recovery and fracture merge
- ``lvstore.storage`` - column files, mergers, the repartitioner and manifests
- ``lvstore.core`` - entity model, metadata repository, errors, logging, settings
"""

__version__ = "0.4.0"
