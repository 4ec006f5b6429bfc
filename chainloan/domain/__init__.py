"""Domain layer: exceptions, clock, interfaces and services."""
