"""
opsflow - Operational workflow automation for dockerized stacks

Runs declarative multi-step procedures with:
- YAML/JSON workflow definitions
- Command-injection and path-traversal validation
- Variable substitution and conditional steps
- Best-effort rollback on failure
- Durable per-run execution history
"""

__version__ = "0.1.0"
__package_name__ = "opsflow"
__short_name__ = "opsflow"
