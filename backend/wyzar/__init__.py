"""WyZar marketplace backend: identity and session assurance layer."""
