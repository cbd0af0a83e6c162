"""
Task tracker backend package.

The FastAPI application lives in task_api.main (module attribute 'app', or
create_app() for a freshly wired instance).
"""

__version__ = "0.1.0"
