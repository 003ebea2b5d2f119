"""Configuration, logging and error types shared by every GP Plus module."""
