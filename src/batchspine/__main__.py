"""Allow ``python -m batchspine``."""

from batchspine.cli.app import app

app()
