"""Domain logic for ranked ELO settlement."""
