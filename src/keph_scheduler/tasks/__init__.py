"""
Task subsystem.

Components:
- task_models.py: data structures (Task, RecurrenceConfig, TaskInstanceSpec, TaskUpdate)
- recurrence.py: next due date + "should the series continue" policy
- task_instances.py: instance generation and batch planning
- task_store.py: SQLite-backed reference store for hosts
- task_api.py: small high-level helpers used by the host
"""
