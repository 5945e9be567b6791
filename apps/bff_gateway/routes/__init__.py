"""HTTP routes of the BFF gateway."""
