"""Architecture checks: layer dependency direction and code conventions."""
