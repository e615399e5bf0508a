"""Per-user inbox store for received SMS."""
