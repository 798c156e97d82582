"""
Task tracking subsystem.

Components:
- task_models.py: data structures (Task, TaskState, make_task_id)
- task_state.py: in-memory tracker state (known tasks + suppression maps)
- reconciler.py: merges scraped batches into the state and persists it
- dispatcher.py: pending-count badge + rate-limited system notifications
- service.py: facade used by connectors and CLI commands
- check_loop.py: polling loop that feeds scraped batches to the service
- sources.py: task sources (scraper output) and LoginRequiredError
"""
