"""codebricks: a file-backed repository of reusable code templates."""

__version__ = "0.1.0"
