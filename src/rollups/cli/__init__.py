"""Console entry points for the rollup jobs."""
