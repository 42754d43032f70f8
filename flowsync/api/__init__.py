"""REST API for workflows and executions."""
