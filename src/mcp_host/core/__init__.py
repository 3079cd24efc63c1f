"""Configuration, logging and the server registry."""
