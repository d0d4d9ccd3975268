"""Image Drop backend."""
