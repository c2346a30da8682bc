"""Calendar domain controllers."""
