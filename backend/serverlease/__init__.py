"""Lease broker for a pool of panel-managed game servers."""
