from .settings import WorkflowSettings, load_settings

__all__ = ["WorkflowSettings", "load_settings"]
