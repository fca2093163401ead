"""SCENECAST utilities."""
