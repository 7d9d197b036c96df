"""Grid building and field update kernels."""
