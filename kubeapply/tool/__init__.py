"""Command line tools for kubeapply."""
