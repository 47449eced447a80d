"""Built-in command groups for the hawkcli CLI."""
