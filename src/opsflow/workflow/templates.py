"""
Built-in workflow templates used by `opsflow workflow create`.

- standard: deploy with backup, smoke tests and restore on failure
- maintenance: nightly housekeeping
- incident: first-response diagnostics
"""

from copy import deepcopy

from ..constants import CLI_NAME

TEMPLATES: dict[str, dict] = {
    "standard": {
        "name": "Standard Deployment",
        "description": "Deploy the stack with full verification",
        "variables": {
            "ENV": "production",
            "VERSION": "latest",
        },
        "steps": [
            {"name": "Validate environment", "run": f"{CLI_NAME} validate"},
            {"name": "Create backup", "run": f"{CLI_NAME} backup"},
            {"name": "Deploy services", "run": "make prod"},
            {"name": "Wait for services", "run": "sleep 10"},
            {"name": "Run smoke tests", "run": f"{CLI_NAME} smoke-test --quick"},
            {"name": "Check status", "run": f"{CLI_NAME} status"},
        ],
        "rollback": [
            {"name": "Restore from backup", "run": f"{CLI_NAME} restore"},
            {"name": "Check status after rollback", "run": f"{CLI_NAME} status"},
        ],
    },
    "maintenance": {
        "name": "Nightly Maintenance",
        "description": "Automated nightly maintenance tasks",
        "variables": {
            "RETENTION_DAYS": "7",
        },
        "steps": [
            {"name": "Clean old logs", "run": f"{CLI_NAME} log clean"},
            {"name": "Prune old containers", "run": f"{CLI_NAME} prune containers --days ${{RETENTION_DAYS}}"},
            {"name": "Verify backup integrity", "run": f"{CLI_NAME} backup verify"},
            {"name": "Run security scan", "run": f"{CLI_NAME} security --status"},
            {"name": "Update images", "run": f"{CLI_NAME} update --check"},
        ],
    },
    "incident": {
        "name": "Incident Response",
        "description": "Emergency incident response workflow",
        "variables": {},
        "steps": [
            {"name": "Check service status", "run": f"{CLI_NAME} status"},
            {"name": "Analyze recent logs", "run": f"{CLI_NAME} analyze --time 1h"},
            {"name": "Run diagnostics", "run": f"{CLI_NAME} doctor"},
            {"name": "Export logs for analysis", "run": f"{CLI_NAME} logs export --last 1h ./incident-logs"},
        ],
    },
}

DEFAULT_TEMPLATE = "standard"


def get_template(template: str = DEFAULT_TEMPLATE) -> dict:
    """Return a fresh copy of a template document (unknown names fall back to standard)."""
    return deepcopy(TEMPLATES.get(template, TEMPLATES[DEFAULT_TEMPLATE]))
