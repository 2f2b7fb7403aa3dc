"""Core polling machinery: resolution, probes, cycles, stabilization and supervision."""
