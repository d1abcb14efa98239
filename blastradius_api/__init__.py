"""HTTP service exposing the blastradius engine."""
