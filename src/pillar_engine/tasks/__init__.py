"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Recurrence, Project, ...)
- task_store.py: SQLite-backed storage, atomic completion + successor insert
- recurrence.py: next occurrence arithmetic and successor construction
- task_api.py: completion hook used by the task-completion operation
"""
