"""Configuration, errors, logging and dice parsing shared by the relay."""
