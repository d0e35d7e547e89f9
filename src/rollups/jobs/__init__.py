"""Batch jobs built on the recomputation routines."""
