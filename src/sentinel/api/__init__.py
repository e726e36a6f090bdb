"""REST API for Sentinel playbook management."""
