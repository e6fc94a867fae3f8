"""Turn detection for GitHub pull requests, review requests and comments."""

__version__ = "0.1.0"
