"""Resumable, sequential batch generation of scene assets."""
