"""HTTP service that builds Ollama prompts from TOML specifications and returns the generated files."""

__version__ = "0.4.0"