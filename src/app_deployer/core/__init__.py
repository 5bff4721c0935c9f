"""Configuration, models and errors shared by every deployment step."""
