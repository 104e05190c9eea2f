"""Rating-system domain modules."""
