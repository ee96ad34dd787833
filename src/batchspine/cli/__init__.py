"""batch-spine command line interface."""
