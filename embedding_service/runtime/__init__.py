"""Service runtime helpers: metrics facade and device resolution."""
