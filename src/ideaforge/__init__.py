"""ideaforge - conversational business planning assistant."""

__version__ = "0.1.0"
