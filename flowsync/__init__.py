"""FlowSync: editor graphs to engine workflows, with tracked executions."""

__version__ = "1.0.0"
