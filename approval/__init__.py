"""Chapter approval engine."""
