"""SCENECAST command-line interface."""
