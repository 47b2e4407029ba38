"""Command line tools for EBOOT patching."""
