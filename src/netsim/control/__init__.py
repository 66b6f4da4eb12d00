"""Controller contract and error taxonomy."""
