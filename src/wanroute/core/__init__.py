"""Event scheduler, topology, link state, classification and the simulation engine."""
