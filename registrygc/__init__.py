"""Mark-and-sweep garbage collection for container registry storage on a filesystem or S3."""

__version__ = "0.1.0"