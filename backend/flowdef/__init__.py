"""flowdef - workflow definition store, DAG validator and version engine."""

__version__ = "0.1.0"
