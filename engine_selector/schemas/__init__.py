"""Data models: hardware snapshots and engine manifests."""
