"""Presenter Tools: project scripture, hymns and slides to any screen."""
