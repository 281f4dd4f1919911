"""Browser-driven Instagram crawler: posts, comments and details."""

__version__ = "1.0.0"
