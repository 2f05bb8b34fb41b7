"""One-shot migration of the legacy ``userData.json`` snapshot."""
