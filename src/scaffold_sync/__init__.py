"""scaffold-sync: keep a scaffolded configuration tree in step with its template."""

__version__ = "0.4.0"
