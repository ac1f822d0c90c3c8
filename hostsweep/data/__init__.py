"""Report artifacts, risk scoring and baseline comparison."""
