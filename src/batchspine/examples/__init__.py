"""Example jobs runnable from the CLI (``--jobs batchspine.examples.orders:build_registry``)."""
