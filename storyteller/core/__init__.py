"""Configuration, logging, errors and request plumbing shared by the server and client."""
