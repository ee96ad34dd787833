"""Batch execution: parameters, models, fault policy, chunks, jobs and launching."""
