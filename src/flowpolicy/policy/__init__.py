"""Rule aggregation, policy rendering, and the generation service."""
