"""Core types shared by the bus: phases, built-in event types, domain errors."""
