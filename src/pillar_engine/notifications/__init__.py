"""
Notification subsystem.

Components:
- notification_models.py: preferences, reminder rules, notifications
- quiet_hours.py: timezone-aware quiet-hours check
- generator.py: per-task decision of which notifications are new
- notification_store.py: SQLite notification + preference stores
- scheduler.py: one sweep over all eligible tasks, and the polling loop
"""
