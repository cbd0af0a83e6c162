"""HTTP routers mounted by task_api.main."""
