"""Project state snapshots and their persistence."""
