from . import health, jobs, stack, webhooks

__all__ = ["health", "jobs", "stack", "webhooks"]
